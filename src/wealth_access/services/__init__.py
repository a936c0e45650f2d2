"""Services package - Business logic layer."""
from .access_decider import AccessDecider, AccessFilters
from .bulk_reconciler import BulkImportFailure, BulkImportResult, BulkReconciler, BulkUserRecord
from .identity_sync import IdentitySyncEngine, derive_role

__all__ = [
    "AccessDecider",
    "AccessFilters",
    "BulkImportFailure",
    "BulkImportResult",
    "BulkReconciler",
    "BulkUserRecord",
    "IdentitySyncEngine",
    "derive_role",
]
