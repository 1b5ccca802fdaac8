from __future__ import annotations

import logging

from sqlalchemy import event, inspect

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from ..validation import InternalError

logger = logging.getLogger(__name__)


class ExchangeTrackingRecord(db.Model):
    """
    Filled-for-empty exchange observed on one delivery order.

    variance_qty = empty_collected - expected_empty
    variance_type = MATCH (0) / SHORTAGE (<0) / EXCESS (>0)

    Quantities are immutable; acknowledgment only appends metadata.
    """
    __tablename__ = "exchange_tracking_records"
    __table_args__ = (
        db.Index("ix_exchange_tracking_plan", "plan_id"),
        db.Index("ix_exchange_tracking_order", "order_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Delivery-domain references
    order_id = db.Column(db.Integer, nullable=False)
    plan_id = db.Column(db.Integer, nullable=True)
    customer_id = db.Column(db.Integer, nullable=True, index=True)
    cylinder_type_id = db.Column(db.Integer, nullable=True)
    delivery_transaction_id = db.Column(db.Integer, nullable=True)

    filled_delivered = db.Column(db.Integer, nullable=False, default=0)
    empty_collected = db.Column(db.Integer, nullable=False, default=0)
    expected_empty = db.Column(db.Integer, nullable=False, default=0)
    damaged_qty = db.Column(db.Integer, nullable=False, default=0)

    variance_qty = db.Column(db.Integer, nullable=False, default=0)
    # MATCH, SHORTAGE, EXCESS
    variance_type = db.Column(db.String(16), nullable=False)
    variance_reason = db.Column(db.String(32), nullable=True)

    customer_acknowledged = db.Column(db.Boolean, nullable=False, default=False)
    acknowledged_by = db.Column(db.Integer, nullable=True)
    acknowledged_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    recorded_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "plan_id": self.plan_id,
            "customer_id": self.customer_id,
            "cylinder_type_id": self.cylinder_type_id,
            "delivery_transaction_id": self.delivery_transaction_id,
            "filled_delivered": self.filled_delivered,
            "empty_collected": self.empty_collected,
            "expected_empty": self.expected_empty,
            "damaged_qty": self.damaged_qty,
            "variance_qty": self.variance_qty,
            "variance_type": self.variance_type,
            "variance_reason": self.variance_reason,
            "customer_acknowledged": self.customer_acknowledged,
            "acknowledged_by": self.acknowledged_by,
            "acknowledged_at": to_utc_z(self.acknowledged_at),
            "notes": self.notes,
            "recorded_by": self.recorded_by,
            "created_at": to_utc_z(self.created_at),
        }


_EXCHANGE_FROZEN_COLUMNS = (
    "order_id",
    "plan_id",
    "customer_id",
    "cylinder_type_id",
    "filled_delivered",
    "empty_collected",
    "expected_empty",
    "damaged_qty",
    "variance_qty",
    "variance_type",
)


@event.listens_for(ExchangeTrackingRecord, "before_update")
def _block_exchange_quantity_update(mapper, connection, target):
    state = inspect(target)
    changed = [name for name in _EXCHANGE_FROZEN_COLUMNS if state.attrs[name].history.has_changes()]
    if changed:
        logger.error("Blocked update of exchange record %s columns %s", target.id, changed)
        raise InternalError(f"Exchange record {target.id} quantities are immutable")


class DailyReconciliation(db.Model):
    """
    End-of-run reconciliation for one delivery plan.

    LIFECYCLE (strictly forward, one step at a time):
    PENDING -> IN_PROGRESS -> COMPLETED -> APPROVED
    """
    __tablename__ = "daily_reconciliations"
    __table_args__ = (
        db.UniqueConstraint("plan_id", "reconciliation_date", name="uq_daily_reconciliations_plan_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    plan_id = db.Column(db.Integer, nullable=False, index=True)
    reconciliation_date = db.Column(db.Date, nullable=False)

    total_orders = db.Column(db.Integer, nullable=False, default=0)
    total_exchanges = db.Column(db.Integer, nullable=False, default=0)
    total_shortages = db.Column(db.Integer, nullable=False, default=0)
    total_excess = db.Column(db.Integer, nullable=False, default=0)
    total_damage = db.Column(db.Integer, nullable=False, default=0)

    shortage_value_cents = db.Column(db.Integer, nullable=False, default=0)
    excess_value_cents = db.Column(db.Integer, nullable=False, default=0)
    damage_value_cents = db.Column(db.Integer, nullable=False, default=0)
    net_variance_value_cents = db.Column(db.Integer, nullable=False, default=0)

    # PENDING, IN_PROGRESS, COMPLETED, APPROVED
    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)

    reconciled_by = db.Column(db.Integer, nullable=False)
    approved_by = db.Column(db.Integer, nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    status_updated_by = db.Column(db.Integer, nullable=True)
    reconciliation_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    variance_details = db.relationship(
        "VarianceDetail",
        back_populates="reconciliation",
        order_by="VarianceDetail.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "plan_id": self.plan_id,
            "reconciliation_date": self.reconciliation_date.isoformat() if self.reconciliation_date else None,
            "total_orders": self.total_orders,
            "total_exchanges": self.total_exchanges,
            "total_shortages": self.total_shortages,
            "total_excess": self.total_excess,
            "total_damage": self.total_damage,
            "shortage_value_cents": self.shortage_value_cents,
            "excess_value_cents": self.excess_value_cents,
            "damage_value_cents": self.damage_value_cents,
            "net_variance_value_cents": self.net_variance_value_cents,
            "status": self.status,
            "reconciled_by": self.reconciled_by,
            "approved_by": self.approved_by,
            "approved_at": to_utc_z(self.approved_at),
            "reconciliation_notes": self.reconciliation_notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class VarianceDetail(db.Model):
    """Per customer / cylinder type breakdown of a DailyReconciliation."""
    __tablename__ = "variance_details"

    id = db.Column(db.Integer, primary_key=True)
    reconciliation_id = db.Column(
        db.Integer, db.ForeignKey("daily_reconciliations.id"), nullable=False, index=True
    )
    customer_id = db.Column(db.Integer, nullable=True)
    cylinder_type_id = db.Column(db.Integer, nullable=True)

    # SHORTAGE, EXCESS, DAMAGE
    variance_type = db.Column(db.String(16), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_value_cents = db.Column(db.Integer, nullable=False, default=0)
    total_value_cents = db.Column(db.Integer, nullable=False, default=0)
    variance_reason = db.Column(db.String(64), nullable=True)

    # PENDING, RESOLVED, ESCALATED
    resolution_status = db.Column(db.String(16), nullable=False, default="PENDING")
    resolution_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    reconciliation = db.relationship("DailyReconciliation", back_populates="variance_details")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reconciliation_id": self.reconciliation_id,
            "customer_id": self.customer_id,
            "cylinder_type_id": self.cylinder_type_id,
            "variance_type": self.variance_type,
            "quantity": self.quantity,
            "unit_value_cents": self.unit_value_cents,
            "total_value_cents": self.total_value_cents,
            "variance_reason": self.variance_reason,
            "resolution_status": self.resolution_status,
            "resolution_notes": self.resolution_notes,
            "created_at": to_utc_z(self.created_at),
        }


class VehicleEndOfDayInventory(db.Model):
    """Counted vs. expected cylinders left on the vehicle after a plan's run."""
    __tablename__ = "vehicle_end_of_day_inventory"
    __table_args__ = (
        db.UniqueConstraint("plan_id", "cylinder_type_id", name="uq_vehicle_eod_plan_type"),
    )

    id = db.Column(db.Integer, primary_key=True)
    plan_id = db.Column(db.Integer, nullable=False, index=True)
    cylinder_type_id = db.Column(db.Integer, nullable=False)

    expected_remaining = db.Column(db.Integer, nullable=False)
    actual_remaining = db.Column(db.Integer, nullable=False)
    # actual_remaining - expected_remaining
    variance = db.Column(db.Integer, nullable=False)
    variance_reason = db.Column(db.String(64), nullable=True)

    counted_by = db.Column(db.Integer, nullable=True)
    counted_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "plan_id": self.plan_id,
            "cylinder_type_id": self.cylinder_type_id,
            "expected_remaining": self.expected_remaining,
            "actual_remaining": self.actual_remaining,
            "variance": self.variance,
            "variance_type": "MATCH" if self.variance == 0 else ("EXCESS" if self.variance > 0 else "SHORTAGE"),
            "variance_reason": self.variance_reason,
            "counted_by": self.counted_by,
            "counted_at": to_utc_z(self.counted_at),
        }
