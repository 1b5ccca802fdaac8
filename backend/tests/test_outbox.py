"""
Inventory outbox: backoff, dead-lettering, due-task processing and operator retry.
"""

import logging
from datetime import timedelta

import pytest

from cylinder_ledger.enums import CylinderStatus, LocationKind, OutboxStatus
from cylinder_ledger.models import InventoryOutboxTask, MovementRecord
from cylinder_ledger.services.inventory_store import Location
from cylinder_ledger.time_utils import utcnow
from cylinder_ledger.validation import ConflictError, NotFoundError

ACTOR_ID = 42

CUSTOMER_7 = Location(LocationKind.CUSTOMER, 7)


@pytest.fixture
def failed_task(services, stocked_yard, make_delivery):
    """An approved GR whose VEHICLE -> CUSTOMER task failed once (vehicle never loaded)."""
    make_delivery(5, [(1, 10, 0)])
    gr = services.gr.create(5, ACTOR_ID)
    services.gr.approve(gr.id, ACTOR_ID)
    task = services.outbox.list_tasks(goods_receipt_id=gr.id)[0]
    assert task.status == OutboxStatus.FAILED.value
    return task


class TestBackoff:
    def test_doubles_from_base(self, services):
        assert services.outbox.backoff_seconds(1) == 2
        assert services.outbox.backoff_seconds(2) == 4
        assert services.outbox.backoff_seconds(3) == 8

    def test_capped(self, services):
        assert services.outbox.backoff_seconds(10) == 60

    def test_failure_schedules_next_attempt(self, services, failed_task):
        assert failed_task.attempts == 1
        assert failed_task.last_attempt_at is not None
        delay = failed_task.next_attempt_at - failed_task.last_attempt_at
        assert delay == timedelta(seconds=2)


class TestDeadLetter:
    def test_alert_after_max_attempts(self, db_session, services, failed_task, caplog):
        with caplog.at_level(logging.ERROR, logger="cylinder_ledger"):
            services.outbox.dispatch_task(failed_task.id)
            task = services.outbox.dispatch_task(failed_task.id)

        assert task.status == OutboxStatus.ALERT.value
        assert task.attempts == 3

        errors = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert len(errors) == 2
        assert all(r.getMessage().startswith("Inventory side effect failed for GR") for r in errors)

        critical = [r for r in caplog.records if r.levelno == logging.CRITICAL]
        assert len(critical) == 1
        assert critical[0].getMessage().startswith(f"Outbox task {task.id} dead-lettered")
        assert critical[0].outbox_task_id == task.id

    def test_alert_task_is_not_redispatched(self, db_session, services, failed_task):
        services.outbox.dispatch_task(failed_task.id)
        services.outbox.dispatch_task(failed_task.id)

        task = services.outbox.dispatch_task(failed_task.id)
        assert task.attempts == 3

        far_future = utcnow() + timedelta(days=1)
        assert services.outbox.process_due_tasks(now=far_future)["processed"] == 0


class TestProcessDueTasks:
    def test_waits_for_backoff(self, services, failed_task):
        assert services.outbox.process_due_tasks()["processed"] == 0

    def test_processes_once_due(self, services, failed_task):
        later = utcnow() + timedelta(seconds=30)
        result = services.outbox.process_due_tasks(now=later)
        assert result == {"processed": 1, "done": 0, "failed": 1, "alert": 0}

    def test_recovers_once_stock_arrives(self, db_session, services, failed_task):
        services.movements.initialize_location(
            LocationKind.VEHICLE, 3, [{"cylinder_type_id": 1, "quantity": 10}], ACTOR_ID
        )

        later = utcnow() + timedelta(seconds=30)
        result = services.outbox.process_due_tasks(now=later)

        assert result["done"] == 1
        db_session.expire_all()
        task = db_session.get(InventoryOutboxTask, failed_task.id)
        assert task.status == OutboxStatus.DONE.value
        assert task.last_error is None
        assert services.store.get(1, CUSTOMER_7, CylinderStatus.FILLED) == 10

    def test_limit(self, services, failed_task, make_delivery):
        make_delivery(6, [(1, 3, 0)])
        gr = services.gr.create(6, ACTOR_ID)
        services.gr.approve(gr.id, ACTOR_ID)

        later = utcnow() + timedelta(seconds=30)
        assert services.outbox.process_due_tasks(now=later, limit=1)["processed"] == 1


class TestRetry:
    def test_retry_done_task_conflicts(self, services, stocked_yard, make_delivery):
        make_delivery(5, [(1, 10, 0)])
        services.movements.record_delivery_movement(5, 1, 10, 3, ACTOR_ID)
        gr = services.gr.approve(services.gr.create(5, ACTOR_ID).id, ACTOR_ID)
        task = services.outbox.list_tasks(goods_receipt_id=gr.id)[0]

        with pytest.raises(ConflictError):
            services.outbox.retry_task(task.id)

    def test_retry_unknown_task(self, services):
        with pytest.raises(NotFoundError):
            services.outbox.retry_task(999)

    def test_retry_rearms_alert_task(self, db_session, services, failed_task):
        services.outbox.dispatch_task(failed_task.id)
        services.outbox.dispatch_task(failed_task.id)
        services.movements.initialize_location(
            LocationKind.VEHICLE, 3, [{"cylinder_type_id": 1, "quantity": 10}], ACTOR_ID
        )

        task = services.outbox.retry_task(failed_task.id)

        assert task.status == OutboxStatus.DONE.value
        assert task.attempts == 1
        assert task.movement_record_id is not None
        assert services.store.get(1, CUSTOMER_7, CylinderStatus.FILLED) == 10


class TestIdempotentDispatch:
    def test_already_applied_movement_is_not_applied_twice(self, db_session, services, failed_task):
        services.movements.initialize_location(
            LocationKind.VEHICLE, 3, [{"cylinder_type_id": 1, "quantity": 20}], ACTOR_ID
        )
        first = services.outbox.retry_task(failed_task.id)
        movements_before = db_session.query(MovementRecord).count()

        # Simulate a crash after the movement landed but before the task was marked
        first.status = OutboxStatus.FAILED.value
        db_session.commit()
        second = services.outbox.retry_task(failed_task.id)

        assert second.status == OutboxStatus.DONE.value
        assert second.movement_record_id == first.movement_record_id
        assert db_session.query(MovementRecord).count() == movements_before
        assert services.store.get(1, CUSTOMER_7, CylinderStatus.FILLED) == 10

    def test_enqueue_reuses_task_with_same_key(self, db_session, services, failed_task):
        gr = failed_task.goods_receipt
        movement = services.outbox._movement_for(failed_task)

        tasks = services.outbox.enqueue(gr, failed_task.task_type, [movement])
        db_session.commit()

        assert [t.id for t in tasks] == [failed_task.id]
        assert db_session.query(InventoryOutboxTask).count() == 1
