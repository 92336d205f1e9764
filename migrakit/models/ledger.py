from datetime import datetime, timezone

from migrakit.extensions import db

STATUS_PENDING = "pending"
STATUS_APPLIED = "applied"
STATUS_FAILED = "failed"  # partial side effects; needs manual inspection
STATUSES = (STATUS_PENDING, STATUS_APPLIED, STATUS_FAILED)


def _utcnow():
    return datetime.now(timezone.utc)


class LedgerEntry(db.Model):
    __tablename__ = "migration_ledger"

    id = db.Column(db.Integer, primary_key=True)
    identifier = db.Column(db.String(64), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    checksum = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=STATUS_PENDING)
    applied_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
    last_error = db.Column(db.Text, nullable=True)

    __table_args__ = (
        db.CheckConstraint(
            "status IN (" + ", ".join(f"'{s}'" for s in STATUSES) + ")",
            name="ck_migration_ledger_status",
        ),
    )
