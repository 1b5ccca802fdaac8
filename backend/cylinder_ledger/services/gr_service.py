# Overview: Goods receipt (GR) lifecycle and the inventory side effects of its transitions.

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import update

from ..enums import GRStatus, OutboxTaskType
from ..models import DocumentSequence, GoodsReceipt
from ..time_utils import utcnow
from ..validation import (
    DuplicateGRError,
    InvalidTransitionError,
    NotFoundError,
    parse_enum,
    parse_int,
)
from .concurrency import lock_for_update, run_in_transaction
from .delivery_lookup import DeliveryLookup
from .movement_service import gr_approval_movement, return_movements
from .outbox_service import InventoryOutbox

"""
GR lifecycle (authoritative)

PENDING -> APPROVED -> FINALIZED, never backwards.

- create: one GR per delivery transaction (DuplicateGRError otherwise).
- approve (PENDING only): status change and VEHICLE -> CUSTOMER outbox tasks
  commit together; tasks are then dispatched.
- finalize (APPROVED only): status change and return outbox tasks commit
  together; tasks are then dispatched.
- close_trip: PENDING fails, APPROVED finalizes, FINALIZED is returned unchanged.

Inventory failures during dispatch never unwind the status change; they stay
in the outbox (FAILED -> ALERT) for retry or manual reconciliation.
"""

logger = logging.getLogger(__name__)

GR_DOCUMENT_TYPE = "GR"


class GRWorkflow:
    def __init__(
        self,
        session,
        deliveries: DeliveryLookup,
        outbox: InventoryOutbox,
        *,
        dispatch_inline: bool = True,
    ):
        self.session = session
        self.deliveries = deliveries
        self.outbox = outbox
        self.dispatch_inline = dispatch_inline

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _next_gr_number(self, on: date) -> str:
        """
        Atomically allocate the next GR number for a day (GR-YYYYMMDD-NNNN).

        Uses a conditional UPDATE on (document_type, sequence_date) so that
        concurrent creators never receive the same number.
        """
        stamp = on.strftime("%Y%m%d")
        stmt = (
            update(DocumentSequence)
            .where(
                DocumentSequence.document_type == GR_DOCUMENT_TYPE,
                DocumentSequence.sequence_date == stamp,
            )
            .values(next_number=DocumentSequence.next_number + 1)
        )
        result = self.session.execute(stmt)
        if result.rowcount:
            current = (
                self.session.query(DocumentSequence.next_number)
                .filter_by(document_type=GR_DOCUMENT_TYPE, sequence_date=stamp)
                .scalar()
            )
            number = current - 1
        else:
            self.session.add(DocumentSequence(document_type=GR_DOCUMENT_TYPE, sequence_date=stamp, next_number=2))
            self.session.flush()
            number = 1
        return f"GR-{stamp}-{number:04d}"

    def _locked(self, gr_id: int) -> GoodsReceipt:
        gr = lock_for_update(self.session.query(GoodsReceipt).filter_by(id=gr_id)).first()
        if gr is None:
            raise NotFoundError(f"GR {gr_id} not found")
        return gr

    def _dispatch(self, task_ids: list[int]) -> None:
        if not self.dispatch_inline or not task_ids:
            return
        for task_id in task_ids:
            self.outbox.dispatch_task(task_id)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def create(self, delivery_id, actor: int, advance_amount_cents=0) -> GoodsReceipt:
        """
        Create the GR for a delivery transaction (status: PENDING).

        Args:
            delivery_id: Delivery transaction the GR finalizes
            actor: User creating the GR
            advance_amount_cents: Advance collected, in cents (>= 0)

        Returns:
            GoodsReceipt: The created GR

        Raises:
            NotFoundError: delivery does not exist
            DuplicateGRError: a GR already exists for the delivery
        """
        delivery_id = parse_int(delivery_id, "delivery_transaction_id", minimum=1)
        advance_amount_cents = parse_int(advance_amount_cents, "advance_amount_cents", minimum=0, required=False) or 0

        def _op():
            self.deliveries.get(delivery_id)
            existing = self.session.query(GoodsReceipt).filter_by(delivery_transaction_id=delivery_id).first()
            if existing is not None:
                raise DuplicateGRError(
                    f"GR {existing.gr_number} already exists for delivery transaction {delivery_id}"
                )

            now = utcnow()
            gr = GoodsReceipt(
                delivery_transaction_id=delivery_id,
                gr_number=self._next_gr_number(now.date()),
                status=GRStatus.PENDING.value,
                advance_amount_cents=advance_amount_cents,
                created_by=actor,
                created_at=now,
            )
            self.session.add(gr)
            self.session.flush()
            return gr

        gr = run_in_transaction(self.session, _op)
        logger.info(
            "Created GR %s for delivery %s",
            gr.gr_number,
            delivery_id,
            extra={"goods_receipt_id": gr.id, "delivery_transaction_id": delivery_id, "gr_status": gr.status},
        )
        return gr

    def approve(self, gr_id, actor: int, advance_amount_cents=None) -> GoodsReceipt:
        """
        Approve a PENDING GR and hand the delivered cylinders to the customer.

        Raises:
            NotFoundError: GR or delivery does not exist
            InvalidTransitionError: GR is not PENDING
        """
        gr_id = parse_int(gr_id, "gr_id", minimum=1)
        advance_amount_cents = parse_int(advance_amount_cents, "advance_amount_cents", minimum=0, required=False)

        def _op():
            gr = self._locked(gr_id)
            if gr.status != GRStatus.PENDING.value:
                raise InvalidTransitionError(f"Cannot approve GR {gr.gr_number} in {gr.status} status")

            delivery = self.deliveries.get(gr.delivery_transaction_id)
            gr.status = GRStatus.APPROVED.value
            gr.approved_by = actor
            gr.approved_at = utcnow()
            if advance_amount_cents is not None:
                gr.advance_amount_cents = advance_amount_cents

            movements = [
                gr_approval_movement(
                    delivery_id=delivery.id,
                    cylinder_type_id=line.cylinder_type_id,
                    quantity=line.delivered_qty,
                    vehicle_id=delivery.vehicle_id,
                    customer_id=delivery.customer_id,
                    actor=actor,
                )
                for line in self.deliveries.line_totals(delivery)
                if line.delivered_qty > 0
            ]
            tasks = self.outbox.enqueue(gr, OutboxTaskType.GR_APPROVAL, movements)
            self.session.flush()
            return gr, [task.id for task in tasks]

        gr, task_ids = run_in_transaction(self.session, _op)
        logger.info(
            "Approved GR %s (%s inventory tasks queued)",
            gr.gr_number,
            len(task_ids),
            extra={"goods_receipt_id": gr.id, "delivery_transaction_id": gr.delivery_transaction_id, "gr_status": gr.status},
        )
        self._dispatch(task_ids)
        return self.session.get(GoodsReceipt, gr_id)

    def finalize(self, gr_id, actor: int) -> GoodsReceipt:
        """
        Finalize an APPROVED GR and bring returns and unsold stock back.

        Raises:
            NotFoundError: GR or delivery does not exist
            InvalidTransitionError: GR is not APPROVED
        """
        gr_id = parse_int(gr_id, "gr_id", minimum=1)

        def _op():
            gr = self._locked(gr_id)
            if gr.status != GRStatus.APPROVED.value:
                raise InvalidTransitionError(f"Cannot finalize GR {gr.gr_number} in {gr.status} status")

            delivery = self.deliveries.get(gr.delivery_transaction_id)
            gr.status = GRStatus.FINALIZED.value
            gr.finalized_by = actor
            gr.finalized_at = utcnow()

            movements = []
            has_returns = False
            for line in self.deliveries.line_totals(delivery):
                has_returns = has_returns or line.returned_qty > 0
                movements.extend(
                    return_movements(
                        delivery_id=delivery.id,
                        cylinder_type_id=line.cylinder_type_id,
                        delivered_qty=line.delivered_qty,
                        returned_qty=line.returned_qty,
                        vehicle_id=delivery.vehicle_id,
                        customer_id=delivery.customer_id,
                        actor=actor,
                    )
                )
            tasks = self.outbox.enqueue(gr, OutboxTaskType.GR_FINALIZE, movements)
            self.session.flush()
            return gr, [task.id for task in tasks], has_returns

        gr, task_ids, has_returns = run_in_transaction(self.session, _op)
        if has_returns:
            logger.warning(
                "GR %s returns are recorded as FILLED; RETURN_EMPTY expects FILLED->EMPTY. "
                "Confirm the status of returned cylinders with the yard.",
                gr.gr_number,
                extra={"goods_receipt_id": gr.id, "delivery_transaction_id": gr.delivery_transaction_id},
            )
        logger.info(
            "Finalized GR %s (%s inventory tasks queued)",
            gr.gr_number,
            len(task_ids),
            extra={"goods_receipt_id": gr.id, "delivery_transaction_id": gr.delivery_transaction_id, "gr_status": gr.status},
        )
        self._dispatch(task_ids)
        return self.session.get(GoodsReceipt, gr_id)

    def close_trip(self, gr_id, actor: int) -> GoodsReceipt:
        """PENDING -> error; APPROVED -> finalize; FINALIZED -> unchanged."""
        gr = self.get(gr_id)
        if gr.status == GRStatus.PENDING.value:
            raise InvalidTransitionError(f"Cannot close trip for GR {gr.gr_number}: GR is not approved")
        if gr.status == GRStatus.APPROVED.value:
            return self.finalize(gr.id, actor)
        return gr

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, gr_id) -> GoodsReceipt:
        gr_id = parse_int(gr_id, "gr_id", minimum=1)
        gr = self.session.get(GoodsReceipt, gr_id)
        if gr is None:
            raise NotFoundError(f"GR {gr_id} not found")
        return gr

    def get_by_delivery(self, delivery_id: int) -> GoodsReceipt | None:
        return self.session.query(GoodsReceipt).filter_by(delivery_transaction_id=delivery_id).first()

    def exists(self, delivery_id) -> bool:
        delivery_id = parse_int(delivery_id, "delivery_transaction_id", minimum=1)
        return self.get_by_delivery(delivery_id) is not None

    def list_grs(self, status=None) -> list[GoodsReceipt]:
        status = parse_enum(GRStatus, status, "status", required=False)
        query = self.session.query(GoodsReceipt)
        if status is not None:
            query = query.filter(GoodsReceipt.status == status.value)
        return query.order_by(GoodsReceipt.created_at.desc(), GoodsReceipt.id.desc()).all()

    def list_approved(self) -> list[GoodsReceipt]:
        """GRs whose advance is confirmed (APPROVED or FINALIZED)."""
        return (
            self.session.query(GoodsReceipt)
            .filter(GoodsReceipt.status.in_([GRStatus.APPROVED.value, GRStatus.FINALIZED.value]))
            .order_by(GoodsReceipt.approved_at.desc(), GoodsReceipt.id.desc())
            .all()
        )

    def describe(self, gr: GoodsReceipt) -> dict:
        data = gr.to_dict()
        data["delivery"] = gr.delivery.to_dict() if gr.delivery else None
        data["outbox_tasks"] = [task.to_dict() for task in gr.outbox_tasks]
        return data

    def preview(self, delivery_id) -> dict:
        """Delivery lines with net quantities, plus the existing GR if any."""
        delivery_id = parse_int(delivery_id, "delivery_transaction_id", minimum=1)
        delivery = self.deliveries.get(delivery_id)
        lines = [line.to_dict() for line in delivery.lines]
        existing = self.get_by_delivery(delivery_id)
        return {
            "delivery": delivery.to_dict(),
            "lines": lines,
            "totals": {
                "delivered_qty": sum(line["delivered_qty"] for line in lines),
                "returned_qty": sum(line["returned_qty"] for line in lines),
                "net_qty": sum(line["net_qty"] for line in lines),
            },
            "goods_receipt": existing.to_dict() if existing else None,
            "can_create": existing is None,
        }
