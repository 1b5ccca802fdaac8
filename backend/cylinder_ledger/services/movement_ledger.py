# Overview: Append-only movement log; the sole audit trail for quantity transfers.

from __future__ import annotations

from datetime import datetime

from ..models import MovementRecord


class MovementLedger:
    """Append and read MovementRecord rows. Records are never updated or deleted."""

    def __init__(self, session):
        self.session = session

    def append(self, record: MovementRecord) -> MovementRecord:
        """Persist a new record and return it with id and created_at populated."""
        if record.id is not None:
            raise ValueError("Movement record is already persisted")
        self.session.add(record)
        self.session.flush()
        return record

    def find_by_idempotency_key(self, key: str) -> MovementRecord | None:
        return self.session.query(MovementRecord).filter_by(idempotency_key=key).first()

    def get(self, movement_id: int) -> MovementRecord | None:
        return self.session.get(MovementRecord, movement_id)

    def query(
        self,
        *,
        cylinder_type_id: int | None = None,
        reference_transaction_id: int | None = None,
        movement_type: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[MovementRecord]:
        """Records ordered newest first; since/until are inclusive bounds on created_at."""
        query = self.session.query(MovementRecord)
        if cylinder_type_id is not None:
            query = query.filter(MovementRecord.cylinder_type_id == cylinder_type_id)
        if reference_transaction_id is not None:
            query = query.filter(MovementRecord.reference_transaction_id == reference_transaction_id)
        if movement_type is not None:
            query = query.filter(MovementRecord.movement_type == movement_type)
        if since is not None:
            query = query.filter(MovementRecord.created_at >= since)
        if until is not None:
            query = query.filter(MovementRecord.created_at <= until)

        query = query.order_by(MovementRecord.created_at.desc(), MovementRecord.id.desc())
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        return query.all()
