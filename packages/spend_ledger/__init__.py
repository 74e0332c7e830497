"""Public interface for the ``spend_ledger`` package.

This module exposes the run entry points and the public models as the stable
import surface. There is no runtime logic here, only symbol re-exports.
"""

from .api import (
    apply_manual_override,
    recategorize_all,
    run_categorization,
    run_normalization,
)
from .config import Settings
from .errors import (
    CategorizationError,
    ConfigurationError,
    ConversionError,
    LedgerError,
    RetryExhaustedError,
    ValidationError,
)
from .models import (
    Category,
    CategorizationResult,
    NormalizationResult,
    ProcessingStatus,
    Transaction,
    TransactionType,
)

__all__ = [
    # API
    "apply_manual_override",
    "recategorize_all",
    "run_categorization",
    "run_normalization",
    "Settings",
    # Models / types
    "Category",
    "CategorizationResult",
    "NormalizationResult",
    "ProcessingStatus",
    "Transaction",
    "TransactionType",
    # Errors
    "CategorizationError",
    "ConfigurationError",
    "ConversionError",
    "LedgerError",
    "RetryExhaustedError",
    "ValidationError",
]
