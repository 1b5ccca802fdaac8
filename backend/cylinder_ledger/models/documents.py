from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class GoodsReceipt(db.Model):
    """
    Goods receipt (GR) finalizing a customer delivery.

    LIFECYCLE:
    1. PENDING: Created for a delivery transaction (exactly one per delivery)
    2. APPROVED: Advance confirmed; filled cylinders handed over VEHICLE -> CUSTOMER
    3. FINALIZED: Returns processed CUSTOMER -> VEHICLE -> YARD

    Status never regresses. Closing a trip is an action (finalize if APPROVED),
    not a fourth state.
    """
    __tablename__ = "goods_receipts"
    __table_args__ = (
        db.UniqueConstraint("delivery_transaction_id", name="uq_goods_receipts_delivery"),
        db.UniqueConstraint("gr_number", name="uq_goods_receipts_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    delivery_transaction_id = db.Column(
        db.Integer, db.ForeignKey("delivery_transactions.id"), nullable=False, index=True
    )

    # GR-YYYYMMDD-NNNN
    gr_number = db.Column(db.String(32), nullable=False)

    # PENDING, APPROVED, FINALIZED
    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)

    advance_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    created_by = db.Column(db.Integer, nullable=False)
    approved_by = db.Column(db.Integer, nullable=True)
    finalized_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    finalized_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    delivery = db.relationship("DeliveryTransaction")
    outbox_tasks = db.relationship(
        "InventoryOutboxTask",
        back_populates="goods_receipt",
        order_by="InventoryOutboxTask.id",
    )

    def __repr__(self) -> str:
        return f"<GoodsReceipt id={self.id} number={self.gr_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "delivery_transaction_id": self.delivery_transaction_id,
            "gr_number": self.gr_number,
            "status": self.status,
            "advance_amount_cents": self.advance_amount_cents,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "approved_by": self.approved_by,
            "approved_at": to_utc_z(self.approved_at),
            "finalized_by": self.finalized_by,
            "finalized_at": to_utc_z(self.finalized_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryOutboxTask(db.Model):
    """
    Durable queue entry for an inventory side effect of a GR transition.

    Written in the same DB transaction as the GR status change, applied afterwards.
    PENDING -> DONE on success; PENDING/FAILED -> FAILED on error with backoff;
    FAILED -> ALERT once attempts reach max_attempts (operator must intervene).
    """
    __tablename__ = "inventory_outbox_tasks"
    __table_args__ = (
        db.UniqueConstraint("idempotency_key", name="uq_inventory_outbox_idempotency_key"),
        db.Index("ix_inventory_outbox_due", "status", "next_attempt_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    goods_receipt_id = db.Column(db.Integer, db.ForeignKey("goods_receipts.id"), nullable=False, index=True)
    delivery_transaction_id = db.Column(db.Integer, nullable=False)

    # GR_APPROVAL, GR_FINALIZE
    task_type = db.Column(db.String(16), nullable=False)
    # Order of application within one GR transition
    sequence = db.Column(db.Integer, nullable=False, default=0)

    # Movement payload
    cylinder_type_id = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    movement_type = db.Column(db.String(32), nullable=False)
    from_location_kind = db.Column(db.String(16), nullable=True)
    from_location_reference_id = db.Column(db.Integer, nullable=True)
    from_status = db.Column(db.String(8), nullable=True)
    to_location_kind = db.Column(db.String(16), nullable=False)
    to_location_reference_id = db.Column(db.Integer, nullable=True)
    to_status = db.Column(db.String(8), nullable=False)
    requested_by = db.Column(db.Integer, nullable=True)

    idempotency_key = db.Column(db.String(160), nullable=False)

    # PENDING, DONE, FAILED, ALERT
    status = db.Column(db.String(16), nullable=False, default="PENDING")
    attempts = db.Column(db.Integer, nullable=False, default=0)
    max_attempts = db.Column(db.Integer, nullable=False, default=5)
    next_attempt_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    last_attempt_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_error = db.Column(db.Text, nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    movement_record_id = db.Column(db.Integer, db.ForeignKey("movement_records.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    goods_receipt = db.relationship("GoodsReceipt", back_populates="outbox_tasks")

    def __repr__(self) -> str:
        return f"<InventoryOutboxTask id={self.id} {self.task_type} status={self.status} attempts={self.attempts}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "goods_receipt_id": self.goods_receipt_id,
            "delivery_transaction_id": self.delivery_transaction_id,
            "task_type": self.task_type,
            "sequence": self.sequence,
            "cylinder_type_id": self.cylinder_type_id,
            "quantity": self.quantity,
            "movement_type": self.movement_type,
            "from_location": {
                "kind": self.from_location_kind,
                "reference_id": self.from_location_reference_id,
                "status": self.from_status,
            } if self.from_location_kind else None,
            "to_location": {
                "kind": self.to_location_kind,
                "reference_id": self.to_location_reference_id,
                "status": self.to_status,
            },
            "status": self.status,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "next_attempt_at": to_utc_z(self.next_attempt_at),
            "last_attempt_at": to_utc_z(self.last_attempt_at),
            "last_error": self.last_error,
            "completed_at": to_utc_z(self.completed_at),
            "movement_record_id": self.movement_record_id,
        }


class DocumentSequence(db.Model):
    """
    Atomic per-day document sequences (GR-YYYYMMDD-NNNN).

    One row per (document_type, sequence_date); next_number is bumped with a
    conditional UPDATE so concurrent creators never share a number.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "sequence_date", name="uq_doc_sequences_type_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(16), nullable=False)
    # YYYYMMDD
    sequence_date = db.Column(db.String(8), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
