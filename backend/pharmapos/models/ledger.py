from __future__ import annotations

from ..extensions import db
from pharmapos.time_utils import to_utc_z, utcnow

ENTRY_SALE = "SALE"
ENTRY_EXPENSE = "EXPENSE"
ENTRY_REFUND = "REFUND"
ENTRY_ADJUSTMENT = "ADJUSTMENT"
ENTRY_TAX = "TAX"
ENTRY_COST = "COST"

ENTRY_TYPES = (ENTRY_SALE, ENTRY_EXPENSE, ENTRY_REFUND, ENTRY_ADJUSTMENT, ENTRY_TAX, ENTRY_COST)


class LedgerEntry(db.Model):
    """
    Minimal financial fact (not double-entry).

    Append-only: rows are written inside the same transaction as the record
    they describe (reference_type/reference_id) and never updated or deleted.
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        db.Index("ix_ledger_entries_branch_created", "branch_id", "created_at"),
        db.Index("ix_ledger_entries_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    entry_type = db.Column(db.String(16), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)

    reference_type = db.Column(db.String(32), nullable=False)
    reference_id = db.Column(db.Integer, nullable=False)

    description = db.Column(db.String(255), nullable=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "entry_type": self.entry_type,
            "amount_cents": self.amount_cents,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "description": self.description,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
