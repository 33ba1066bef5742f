# Overview: Service-layer operations for ledger; append-only financial facts.

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..errors import ValidationError
from ..models import LedgerEntry
from ..models.ledger import ENTRY_TYPES
"""
Ledger Invariants (authoritative)

- Append-only. No updates, no deletes.
- Entries are written inside the same DB transaction as the record they
  describe; a rolled-back sale leaves no ledger entry behind.
- Exactly one SALE entry per Sale, amount == Sale.subtotal_cents,
  reference ("sale", sale.id).
- Range filters are inclusive on both ends.
"""


def append_ledger_entry(
    *,
    branch_id: int,
    entry_type: str,
    amount_cents: int,
    reference_type: str,
    reference_id: int,
    created_by_user_id: int,
    description: str | None = None,
) -> LedgerEntry:
    """
    Append one ledger entry to the caller's transaction.

    No commit here; flush assigns the id.
    """
    if entry_type not in ENTRY_TYPES:
        raise ValidationError(f"entry_type must be one of: {', '.join(ENTRY_TYPES)}")

    entry = LedgerEntry(
        branch_id=branch_id,
        entry_type=entry_type,
        amount_cents=amount_cents,
        reference_type=reference_type,
        reference_id=reference_id,
        description=description,
        created_by_user_id=created_by_user_id,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def list_ledger_entries(
    branch_id: int,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    entry_type: str | None = None,
    limit: int = 200,
) -> list[LedgerEntry]:
    query = db.session.query(LedgerEntry).filter(LedgerEntry.branch_id == branch_id)
    if start is not None:
        query = query.filter(LedgerEntry.created_at >= start)
    if end is not None:
        query = query.filter(LedgerEntry.created_at <= end)
    if entry_type:
        query = query.filter(LedgerEntry.entry_type == entry_type)
    return query.order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc()).limit(limit).all()


def entries_for_reference(reference_type: str, reference_id: int) -> list[LedgerEntry]:
    return (
        db.session.query(LedgerEntry)
        .filter_by(reference_type=reference_type, reference_id=reference_id)
        .order_by(LedgerEntry.id.asc())
        .all()
    )
