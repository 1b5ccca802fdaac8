# Overview: Durable, retried inventory side effects of GR transitions.

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from ..enums import CylinderStatus, LocationKind, MovementType, OutboxStatus, OutboxTaskType
from ..models import GoodsReceipt, InventoryOutboxTask
from ..time_utils import utcnow
from ..validation import ConflictError, NotFoundError, parse_enum
from .concurrency import run_in_transaction
from .inventory_store import Location
from .movement_service import CylinderMovementService, movement_idempotency_key
from .movement_validator import MovementRequest

"""
Outbox task lifecycle (authoritative)

- Tasks are inserted in the SAME transaction as the GR status change.
- Each attempt runs in its own transaction: apply movement + mark DONE.
- A failed attempt is rolled back, then recorded in a fresh transaction:
  attempts += 1, last_error, next_attempt_at = now + min(cap, base * 2^(attempts-1)).
- attempts >= max_attempts -> ALERT (dead letter, CRITICAL log). Only an
  operator retry re-arms an ALERT task.
- Movements carry an idempotency key, so re-running a task whose movement
  already landed is a no-op.
"""

logger = logging.getLogger(__name__)

DUE_STATUSES = (OutboxStatus.PENDING.value, OutboxStatus.FAILED.value)


class InventoryOutbox:
    def __init__(
        self,
        session,
        movements: CylinderMovementService,
        *,
        max_attempts: int = 5,
        backoff_base_seconds: float = 2.0,
        backoff_max_seconds: float = 300.0,
    ):
        self.session = session
        self.movements = movements
        self.max_attempts = max_attempts
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds

    def backoff_seconds(self, attempts: int) -> float:
        """Delay before the next attempt after `attempts` failures."""
        exponent = max(attempts - 1, 0)
        return min(self.backoff_max_seconds, self.backoff_base_seconds * (2 ** exponent))

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    def enqueue(
        self,
        goods_receipt: GoodsReceipt,
        task_type: OutboxTaskType,
        movements: list[MovementRequest],
    ) -> list[InventoryOutboxTask]:
        """Stage one task per movement in the current transaction (no commit)."""
        tasks = []
        for sequence, movement in enumerate(movements, start=1):
            movement = movement.normalized()
            key = movement_idempotency_key(movement)
            existing = self.session.query(InventoryOutboxTask).filter_by(idempotency_key=key).first()
            if existing is not None:
                tasks.append(existing)
                continue

            task = InventoryOutboxTask(
                goods_receipt_id=goods_receipt.id,
                delivery_transaction_id=goods_receipt.delivery_transaction_id,
                task_type=OutboxTaskType(task_type).value,
                sequence=sequence,
                cylinder_type_id=movement.cylinder_type_id,
                quantity=movement.quantity,
                movement_type=movement.movement_type.value,
                from_location_kind=movement.from_location.kind.value if movement.from_location else None,
                from_location_reference_id=movement.from_location.reference_id if movement.from_location else None,
                from_status=movement.from_status.value if movement.from_status else None,
                to_location_kind=movement.to_location.kind.value,
                to_location_reference_id=movement.to_location.reference_id,
                to_status=movement.to_status.value,
                requested_by=movement.moved_by,
                idempotency_key=key,
                status=OutboxStatus.PENDING.value,
                attempts=0,
                max_attempts=self.max_attempts,
                next_attempt_at=utcnow(),
            )
            self.session.add(task)
            tasks.append(task)
        self.session.flush()
        return tasks

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _movement_for(self, task: InventoryOutboxTask) -> MovementRequest:
        from_location = None
        if task.from_location_kind is not None:
            from_location = Location(LocationKind(task.from_location_kind), task.from_location_reference_id)
        return MovementRequest(
            cylinder_type_id=task.cylinder_type_id,
            quantity=task.quantity,
            movement_type=MovementType(task.movement_type),
            from_location=from_location,
            from_status=CylinderStatus(task.from_status) if task.from_status else None,
            to_location=Location(LocationKind(task.to_location_kind), task.to_location_reference_id),
            to_status=CylinderStatus(task.to_status),
            reference_transaction_id=task.delivery_transaction_id,
            moved_by=task.requested_by,
            notes=f"{task.task_type} for GR {task.goods_receipt_id}",
            idempotency_key=task.idempotency_key,
        )

    def _record_failure(self, task_id: int, exc: Exception) -> InventoryOutboxTask:
        def _op():
            task = self.session.get(InventoryOutboxTask, task_id)
            now = utcnow()
            task.attempts += 1
            task.last_attempt_at = now
            task.last_error = f"{type(exc).__name__}: {exc}"[:2000]

            log_fields = {
                "outbox_task_id": task.id,
                "goods_receipt_id": task.goods_receipt_id,
                "delivery_transaction_id": task.delivery_transaction_id,
                "cylinder_type_id": task.cylinder_type_id,
                "quantity": task.quantity,
                "movement_type": task.movement_type,
                "attempt": task.attempts,
            }
            logger.error(
                "Inventory side effect failed for GR %s (delivery %s, type %s, qty %s, %s), attempt %s/%s: %s",
                task.goods_receipt_id,
                task.delivery_transaction_id,
                task.cylinder_type_id,
                task.quantity,
                task.movement_type,
                task.attempts,
                task.max_attempts,
                exc,
                extra=log_fields,
            )

            if task.attempts >= task.max_attempts:
                task.status = OutboxStatus.ALERT.value
                logger.critical(
                    "Outbox task %s dead-lettered after %s attempts; manual reconciliation required for GR %s",
                    task.id,
                    task.attempts,
                    task.goods_receipt_id,
                    extra=log_fields,
                )
            else:
                task.status = OutboxStatus.FAILED.value
                task.next_attempt_at = now + timedelta(seconds=self.backoff_seconds(task.attempts))
            return task
        return run_in_transaction(self.session, _op)

    def dispatch_task(self, task_id: int) -> InventoryOutboxTask:
        """Attempt one task now; failures are recorded on the task, never raised."""
        task = self.session.get(InventoryOutboxTask, task_id)
        if task is None:
            raise NotFoundError(f"Outbox task {task_id} not found")
        if task.status in (OutboxStatus.DONE.value, OutboxStatus.ALERT.value):
            return task

        movement = self._movement_for(task)

        def _op():
            current = self.session.get(InventoryOutboxTask, task_id)
            record, _created = self.movements.apply(movement)
            now = utcnow()
            current.attempts += 1
            current.last_attempt_at = now
            current.status = OutboxStatus.DONE.value
            current.completed_at = now
            current.movement_record_id = record.id
            current.last_error = None
            return current

        try:
            return run_in_transaction(self.session, _op)
        except Exception as exc:
            return self._record_failure(task_id, exc)

    def process_due_tasks(self, now: datetime | None = None, limit: int = 100) -> dict:
        """Dispatch PENDING/FAILED tasks whose next_attempt_at has passed."""
        now = now or utcnow()
        due_ids = [
            task_id
            for (task_id,) in self.session.query(InventoryOutboxTask.id)
            .filter(
                InventoryOutboxTask.status.in_(DUE_STATUSES),
                InventoryOutboxTask.next_attempt_at <= now,
            )
            .order_by(InventoryOutboxTask.id)
            .limit(limit)
            .all()
        ]

        summary = {"processed": 0, "done": 0, "failed": 0, "alert": 0}
        for task_id in due_ids:
            task = self.dispatch_task(task_id)
            summary["processed"] += 1
            if task.status == OutboxStatus.DONE.value:
                summary["done"] += 1
            elif task.status == OutboxStatus.ALERT.value:
                summary["alert"] += 1
            else:
                summary["failed"] += 1
        if summary["processed"]:
            logger.info("Processed %s outbox tasks", summary["processed"], extra=dict(summary))
        return summary

    # ------------------------------------------------------------------
    # Operator views
    # ------------------------------------------------------------------

    def get_task(self, task_id: int) -> InventoryOutboxTask:
        task = self.session.get(InventoryOutboxTask, task_id)
        if task is None:
            raise NotFoundError(f"Outbox task {task_id} not found")
        return task

    def list_tasks(self, status=None, goods_receipt_id: int | None = None) -> list[InventoryOutboxTask]:
        status = parse_enum(OutboxStatus, status, "status", required=False)
        query = self.session.query(InventoryOutboxTask)
        if status is not None:
            query = query.filter(InventoryOutboxTask.status == status.value)
        if goods_receipt_id is not None:
            query = query.filter(InventoryOutboxTask.goods_receipt_id == goods_receipt_id)
        return query.order_by(InventoryOutboxTask.id).all()

    def retry_task(self, task_id: int) -> InventoryOutboxTask:
        """Re-arm a FAILED or ALERT task with its attempt count reset and dispatch it."""
        def _op():
            task = self.get_task(task_id)
            if task.status not in (OutboxStatus.FAILED.value, OutboxStatus.ALERT.value):
                raise ConflictError(f"Outbox task {task_id} is {task.status}; only FAILED or ALERT tasks can be retried")
            logger.info("Re-arming outbox task %s (was %s after %s attempts)", task.id, task.status, task.attempts)
            task.status = OutboxStatus.PENDING.value
            task.attempts = 0
            task.max_attempts = self.max_attempts
            task.next_attempt_at = utcnow()
            return task
        run_in_transaction(self.session, _op)
        return self.dispatch_task(task_id)
