from __future__ import annotations

import logging

from sqlalchemy import event

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from ..validation import InternalError

logger = logging.getLogger(__name__)


class CylinderType(db.Model):
    """
    Cylinder type master data (read model).

    Owned by the master-data domain; this subsystem only reads capacity,
    description and unit value for summaries and variance valuation.
    """
    __tablename__ = "cylinder_types"

    id = db.Column(db.Integer, primary_key=True)
    description = db.Column(db.String(100), nullable=False)
    capacity = db.Column(db.String(32), nullable=True)

    # Authoritative storage in cents
    unit_value_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<CylinderType id={self.id} capacity={self.capacity!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "capacity": self.capacity,
            "unit_value_cents": self.unit_value_cents,
            "is_active": self.is_active,
        }


def position_key(cylinder_type_id: int, location_kind: str, location_reference_id: int | None, cylinder_status: str) -> str:
    """Canonical identity string for a position; NULL reference ids collapse to '-'."""
    ref = "-" if location_reference_id is None else str(location_reference_id)
    return f"{cylinder_type_id}:{location_kind}:{ref}:{cylinder_status}"


class InventoryPosition(db.Model):
    """
    Quantity of one cylinder type at one (location, status).

    IDENTITY: (cylinder_type_id, location_kind, location_reference_id, cylinder_status).
    position_key materializes that tuple so the uniqueness constraint also covers
    NULL reference ids (YARD/PLANT/REFILLING).

    INVARIANTS:
    - quantity >= 0 (also a CHECK constraint)
    - at most one row per identity (upsert semantics)
    - rows are pinned to zero, never deleted, once they reach zero
    """
    __tablename__ = "inventory_positions"
    __table_args__ = (
        db.UniqueConstraint("position_key", name="uq_inventory_positions_key"),
        db.CheckConstraint("quantity >= 0", name="ck_inventory_positions_non_negative"),
        db.Index("ix_inventory_positions_location", "location_kind", "location_reference_id"),
        db.Index("ix_inventory_positions_type_status", "cylinder_type_id", "cylinder_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    position_key = db.Column(db.String(96), nullable=False)

    cylinder_type_id = db.Column(db.Integer, db.ForeignKey("cylinder_types.id"), nullable=False)
    location_kind = db.Column(db.String(16), nullable=False)
    location_reference_id = db.Column(db.Integer, nullable=True)
    cylinder_status = db.Column(db.String(8), nullable=False)

    quantity = db.Column(db.Integer, nullable=False, default=0)

    last_updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    last_updated_by = db.Column(db.Integer, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    cylinder_type = db.relationship("CylinderType", lazy="joined")

    def __repr__(self) -> str:
        return f"<InventoryPosition {self.position_key} qty={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cylinder_type_id": self.cylinder_type_id,
            "location_kind": self.location_kind,
            "location_reference_id": self.location_reference_id,
            "cylinder_status": self.cylinder_status,
            "quantity": self.quantity,
            "last_updated_at": to_utc_z(self.last_updated_at),
            "last_updated_by": self.last_updated_by,
        }


class MovementRecord(db.Model):
    """
    Append-only log of every quantity transfer.

    Never updated or deleted after creation (enforced by ORM listeners below).
    idempotency_key is set for movements that may be retried (delivery/GR flows):
    a second application with the same key returns the existing record.
    """
    __tablename__ = "movement_records"
    __table_args__ = (
        db.UniqueConstraint("idempotency_key", name="uq_movement_records_idempotency_key"),
        db.CheckConstraint("quantity > 0", name="ck_movement_records_positive_quantity"),
        db.Index("ix_movement_records_type_created", "cylinder_type_id", "created_at"),
        db.Index("ix_movement_records_reference", "reference_transaction_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    cylinder_type_id = db.Column(db.Integer, db.ForeignKey("cylinder_types.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    movement_type = db.Column(db.String(32), nullable=False, index=True)

    # Source is optional (initialization/adjustment creates stock)
    from_location_kind = db.Column(db.String(16), nullable=True)
    from_location_reference_id = db.Column(db.Integer, nullable=True)
    from_status = db.Column(db.String(8), nullable=True)

    to_location_kind = db.Column(db.String(16), nullable=False)
    to_location_reference_id = db.Column(db.Integer, nullable=True)
    to_status = db.Column(db.String(8), nullable=False)

    reference_transaction_id = db.Column(db.Integer, nullable=True)
    moved_by = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    idempotency_key = db.Column(db.String(160), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return (
            f"<MovementRecord id={self.id} {self.movement_type} qty={self.quantity} "
            f"{self.from_location_kind}->{self.to_location_kind}>"
        )

    def to_dict(self) -> dict:
        from_location = None
        if self.from_location_kind is not None:
            from_location = {
                "kind": self.from_location_kind,
                "reference_id": self.from_location_reference_id,
                "status": self.from_status,
            }
        return {
            "id": self.id,
            "cylinder_type_id": self.cylinder_type_id,
            "quantity": self.quantity,
            "movement_type": self.movement_type,
            "from_location": from_location,
            "to_location": {
                "kind": self.to_location_kind,
                "reference_id": self.to_location_reference_id,
                "status": self.to_status,
            },
            "reference_transaction_id": self.reference_transaction_id,
            "moved_by": self.moved_by,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(MovementRecord, "before_update")
def _block_movement_update(mapper, connection, target):
    logger.error("Blocked update of movement record %s", target.id)
    raise InternalError(f"Movement record {target.id} is immutable")


@event.listens_for(MovementRecord, "before_delete")
def _block_movement_delete(mapper, connection, target):
    logger.error("Blocked delete of movement record %s", target.id)
    raise InternalError(f"Movement record {target.id} cannot be deleted")
