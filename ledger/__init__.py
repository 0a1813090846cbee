"""
Payment ledger for the lottery syndicate

This module provides:
- Transaction records for deposits, withdrawals and prizes
- Idempotent recording of provider payment events (one record per payment intent)
- The storage collaborator interface with an in-memory implementation
- Shallow JSON document merging for transaction details
"""

from .merge import InvalidDocument, merge
from .models import (
    TransactionType,
    TransactionStatus,
    TransactionRecord,
)
from .service import (
    LedgerService,
    LedgerServiceError,
    PersistenceError,
    TransactionNotFoundError,
    InvalidStateTransitionError,
)
from .storage import Storage, InMemoryStorage, StorageError, DuplicateKeyError

__all__ = [
    "InvalidDocument",
    "merge",
    "TransactionType",
    "TransactionStatus",
    "TransactionRecord",
    "LedgerService",
    "LedgerServiceError",
    "PersistenceError",
    "TransactionNotFoundError",
    "InvalidStateTransitionError",
    "Storage",
    "InMemoryStorage",
    "StorageError",
    "DuplicateKeyError",
]
