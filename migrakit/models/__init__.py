from .ledger import (
    LedgerEntry,
    STATUS_APPLIED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUSES,
)

__all__ = ["LedgerEntry", "STATUS_APPLIED", "STATUS_FAILED", "STATUS_PENDING", "STATUSES"]
