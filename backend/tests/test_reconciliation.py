"""
Exchange tracking, daily reconciliation and end-of-day vehicle counts.
"""

from datetime import date

import pytest

from cylinder_ledger.enums import ReconciliationStatus
from cylinder_ledger.models import InventoryPosition, MovementRecord, VarianceDetail
from cylinder_ledger.validation import (
    ConflictError,
    InternalError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)

ACTOR_ID = 42
PLAN_ID = 11


def _exchange(services, order_id, filled, collected, expected, **kwargs):
    kwargs.setdefault("plan_id", PLAN_ID)
    return services.reconciliation.record_exchange(
        order_id=order_id,
        filled_delivered=filled,
        empty_collected=collected,
        expected_empty=expected,
        actor=ACTOR_ID,
        **kwargs,
    )


@pytest.fixture
def plan_exchanges(services, cylinder_type, customer):
    """Order 1: 2 short with 1 damaged; order 2: 1 excess; order 3: exact."""
    return [
        _exchange(services, 1, 10, 8, 10, cylinder_type_id=1, customer_id=7, damaged_qty=1,
                  variance_reason="stock_shortage"),
        _exchange(services, 2, 5, 6, 5, cylinder_type_id=1, customer_id=7),
        _exchange(services, 3, 4, 4, 4, cylinder_type_id=1, customer_id=7, customer_acknowledged=True),
    ]


class TestRecordExchange:
    def test_variance_classification(self, services, cylinder_type):
        short = _exchange(services, 1, 10, 8, 10)
        excess = _exchange(services, 2, 5, 6, 5)
        match = _exchange(services, 3, 5, 5, 5)

        assert (short.variance_qty, short.variance_type) == (-2, "SHORTAGE")
        assert (excess.variance_qty, excess.variance_type) == (1, "EXCESS")
        assert (match.variance_qty, match.variance_type) == (0, "MATCH")

    def test_negative_quantities_rejected(self, services):
        with pytest.raises(ValidationError):
            _exchange(services, 1, -1, 0, 0)
        with pytest.raises(ValidationError):
            _exchange(services, 1, 1, 1, 1, damaged_qty=-2)

    def test_unknown_reason_rejected(self, services):
        with pytest.raises(ValidationError):
            _exchange(services, 1, 1, 0, 1, variance_reason="LOST_AT_SEA")

    def test_customer_taken_from_delivery(self, services, cylinder_type, make_delivery):
        make_delivery(5, [(1, 4, 0)])
        record = _exchange(services, 1, 4, 4, 4, delivery_transaction_id=5)
        assert record.customer_id == 7

    def test_acknowledged_at_recording(self, services):
        record = _exchange(services, 1, 1, 1, 1, customer_acknowledged=True)
        assert record.customer_acknowledged is True
        assert record.acknowledged_by == ACTOR_ID
        assert record.acknowledged_at is not None

    def test_never_touches_inventory(self, db_session, services, cylinder_type):
        _exchange(services, 1, 10, 8, 10, cylinder_type_id=1)
        assert db_session.query(InventoryPosition).count() == 0
        assert db_session.query(MovementRecord).count() == 0


class TestAcknowledge:
    def test_acknowledge_once(self, services):
        record = _exchange(services, 1, 1, 0, 1)
        record = services.reconciliation.acknowledge_exchange(record.id, ACTOR_ID)

        assert record.customer_acknowledged is True
        assert record.acknowledged_by == ACTOR_ID
        with pytest.raises(ConflictError):
            services.reconciliation.acknowledge_exchange(record.id, ACTOR_ID)

    def test_unknown_exchange(self, services):
        with pytest.raises(NotFoundError):
            services.reconciliation.acknowledge_exchange(999, ACTOR_ID)

    def test_quantities_are_frozen(self, db_session, services):
        record = _exchange(services, 1, 10, 8, 10)
        record.empty_collected = 10
        with pytest.raises(InternalError):
            db_session.commit()
        db_session.rollback()

        db_session.expire_all()
        assert services.reconciliation.get_exchange(record.id).empty_collected == 8


class TestSummaries:
    def test_exchange_summary(self, services, plan_exchanges):
        summary = services.reconciliation.get_exchange_summary(PLAN_ID)

        assert summary["plan_id"] == PLAN_ID
        assert summary["total_orders"] == 3
        assert summary["total_exchanges"] == 3
        assert summary["total_shortages"] == 2
        assert summary["total_excess"] == 1
        assert summary["total_damage"] == 1
        assert summary["shortage_value_cents"] == 500000
        assert summary["excess_value_cents"] == 250000
        assert summary["damage_value_cents"] == 250000
        assert summary["net_variance_value_cents"] == 250000 - 500000 - 250000
        assert summary["pending_acknowledgments"] == 2

    def test_untyped_records_valued_at_zero(self, services, cylinder_type):
        _exchange(services, 1, 10, 7, 10)
        summary = services.reconciliation.get_exchange_summary(PLAN_ID)
        assert summary["total_shortages"] == 3
        assert summary["shortage_value_cents"] == 0

    def test_empty_plan(self, services):
        summary = services.reconciliation.get_exchange_summary(99)
        assert summary["total_exchanges"] == 0
        assert summary["net_variance_value_cents"] == 0

    def test_variance_summary_per_customer(self, services, plan_exchanges):
        rows = services.reconciliation.get_exchange_variance_summary(PLAN_ID)

        assert len(rows) == 1
        row = rows[0]
        assert row["customer_id"] == 7
        assert row["customer_name"] == "Sunrise Hotel"
        assert row["total_shortages"] == 2
        assert row["pending_resolutions"] == 0

        services.reconciliation.create_daily_reconciliation(PLAN_ID, ACTOR_ID)
        row = services.reconciliation.get_exchange_variance_summary(PLAN_ID)[0]
        assert row["pending_resolutions"] == 3

    def test_list_exchanges_filters(self, services, plan_exchanges):
        assert len(services.reconciliation.list_exchanges(plan_id=PLAN_ID)) == 3
        shortages = services.reconciliation.list_exchanges(variance_type="shortage")
        assert [r.order_id for r in shortages] == [1]
        assert services.reconciliation.list_exchanges(order_id=2)[0].variance_type == "EXCESS"


class TestDailyReconciliation:
    def test_totals_and_details(self, services, plan_exchanges):
        reconciliation = services.reconciliation.create_daily_reconciliation(
            PLAN_ID, ACTOR_ID, notes="Route 4", reconciliation_date=date(2026, 3, 2)
        )

        assert reconciliation.status == ReconciliationStatus.PENDING.value
        assert reconciliation.total_shortages == 2
        assert reconciliation.net_variance_value_cents == -500000
        assert reconciliation.reconciliation_notes == "Route 4"

        data = services.reconciliation.describe_reconciliation(reconciliation)
        details = {d["variance_type"]: d for d in data["variance_details"]}
        assert set(details) == {"SHORTAGE", "EXCESS", "DAMAGE"}
        assert details["SHORTAGE"]["quantity"] == 2
        assert details["SHORTAGE"]["total_value_cents"] == 500000
        assert details["SHORTAGE"]["variance_reason"] == "STOCK_SHORTAGE"
        assert details["DAMAGE"]["variance_reason"] == "DAMAGE"
        assert all(d["resolution_status"] == "PENDING" for d in details.values())
        assert data["vehicle_inventory"] == []

    def test_one_per_plan_and_date(self, services, plan_exchanges):
        on = date(2026, 3, 2)
        services.reconciliation.create_daily_reconciliation(PLAN_ID, ACTOR_ID, reconciliation_date=on)
        with pytest.raises(ConflictError):
            services.reconciliation.create_daily_reconciliation(PLAN_ID, ACTOR_ID, reconciliation_date=on)
        services.reconciliation.create_daily_reconciliation(PLAN_ID, ACTOR_ID, reconciliation_date=date(2026, 3, 3))

    def test_list_filters(self, services, plan_exchanges):
        first = services.reconciliation.create_daily_reconciliation(PLAN_ID, ACTOR_ID, reconciliation_date=date(2026, 3, 2))
        services.reconciliation.create_daily_reconciliation(12, 43, reconciliation_date=date(2026, 3, 5))
        services.reconciliation.update_reconciliation_status(first.id, "IN_PROGRESS", ACTOR_ID)

        assert [r.plan_id for r in services.reconciliation.list_reconciliations()] == [12, PLAN_ID]
        assert [r.id for r in services.reconciliation.list_reconciliations(status="in_progress")] == [first.id]
        assert [r.plan_id for r in services.reconciliation.list_reconciliations(reconciled_by=43)] == [12]
        assert [r.plan_id for r in services.reconciliation.list_reconciliations(date_to=date(2026, 3, 3))] == [PLAN_ID]


class TestStatusProgression:
    @pytest.fixture
    def reconciliation(self, services, plan_exchanges):
        return services.reconciliation.create_daily_reconciliation(PLAN_ID, ACTOR_ID)

    def test_full_forward_path(self, services, reconciliation):
        for status in ("IN_PROGRESS", "COMPLETED"):
            reconciliation = services.reconciliation.update_reconciliation_status(reconciliation.id, status, ACTOR_ID)
            assert reconciliation.status == status

        reconciliation = services.reconciliation.approve_reconciliation(reconciliation.id, 43)
        assert reconciliation.status == "APPROVED"
        assert reconciliation.approved_by == 43
        assert reconciliation.approved_at is not None

    def test_skipping_a_step_rejected(self, services, reconciliation):
        with pytest.raises(InvalidTransitionError):
            services.reconciliation.update_reconciliation_status(reconciliation.id, "COMPLETED", ACTOR_ID)

    def test_approve_requires_completed(self, services, reconciliation):
        services.reconciliation.update_reconciliation_status(reconciliation.id, "IN_PROGRESS", ACTOR_ID)
        with pytest.raises(InvalidTransitionError):
            services.reconciliation.approve_reconciliation(reconciliation.id, ACTOR_ID)

    def test_no_regression_or_repeat(self, services, reconciliation):
        services.reconciliation.update_reconciliation_status(reconciliation.id, "IN_PROGRESS", ACTOR_ID)
        with pytest.raises(InvalidTransitionError):
            services.reconciliation.update_reconciliation_status(reconciliation.id, "PENDING", ACTOR_ID)
        with pytest.raises(InvalidTransitionError):
            services.reconciliation.update_reconciliation_status(reconciliation.id, "IN_PROGRESS", ACTOR_ID)

    def test_approved_is_terminal(self, services, reconciliation):
        for status in ("IN_PROGRESS", "COMPLETED", "APPROVED"):
            services.reconciliation.update_reconciliation_status(reconciliation.id, status, ACTOR_ID)
        with pytest.raises(InvalidTransitionError):
            services.reconciliation.update_reconciliation_status(reconciliation.id, "APPROVED", ACTOR_ID)

    def test_unknown_status(self, services, reconciliation):
        with pytest.raises(ValidationError):
            services.reconciliation.update_reconciliation_status(reconciliation.id, "ARCHIVED", ACTOR_ID)

    def test_unknown_reconciliation(self, services):
        with pytest.raises(NotFoundError):
            services.reconciliation.update_reconciliation_status(999, "IN_PROGRESS", ACTOR_ID)


class TestVarianceResolution:
    def test_resolve_detail(self, db_session, services, plan_exchanges):
        services.reconciliation.create_daily_reconciliation(PLAN_ID, ACTOR_ID)
        detail = db_session.query(VarianceDetail).filter_by(variance_type="SHORTAGE").one()

        detail = services.reconciliation.update_variance_resolution(detail.id, "resolved", "Driver paid")

        assert detail.resolution_status == "RESOLVED"
        assert detail.resolution_notes == "Driver paid"

    def test_unknown_detail(self, services):
        with pytest.raises(NotFoundError):
            services.reconciliation.update_variance_resolution(999, "RESOLVED")

    def test_unknown_resolution_status(self, db_session, services, plan_exchanges):
        services.reconciliation.create_daily_reconciliation(PLAN_ID, ACTOR_ID)
        detail = db_session.query(VarianceDetail).first()
        with pytest.raises(ValidationError):
            services.reconciliation.update_variance_resolution(detail.id, "IGNORED")


class TestVehicleCount:
    def test_untyped_records_count_toward_every_type(self, services, cylinder_type):
        """(10, 8) and (5, 5) with no type leave 2 on the vehicle; counting 3 is one over."""
        _exchange(services, 1, 10, 8, 10)
        _exchange(services, 2, 5, 5, 5)

        rows = services.reconciliation.count_vehicle_inventory(
            PLAN_ID, [{"cylinder_type_id": 1, "actual_remaining": 3}], ACTOR_ID
        )

        row = rows[0].to_dict()
        assert row["expected_remaining"] == 2
        assert row["actual_remaining"] == 3
        assert row["variance"] == 1
        assert row["variance_type"] == "EXCESS"

    def test_typed_records_only_count_for_their_type(self, services, cylinder_type, commercial_type):
        _exchange(services, 1, 10, 2, 10, cylinder_type_id=1)
        _exchange(services, 2, 6, 1, 6, cylinder_type_id=2)

        rows = services.reconciliation.count_vehicle_inventory(
            PLAN_ID,
            [{"cylinder_type_id": 1, "actual_remaining": 8}, {"cylinder_type_id": 2, "actual_remaining": 4}],
            ACTOR_ID,
        )

        assert [(r.cylinder_type_id, r.expected_remaining, r.variance) for r in rows] == [(1, 8, 0), (2, 5, -1)]
        assert rows[1].to_dict()["variance_type"] == "SHORTAGE"

    def test_recount_replaces_previous(self, services, cylinder_type):
        _exchange(services, 1, 10, 8, 10)
        services.reconciliation.count_vehicle_inventory(PLAN_ID, [{"cylinder_type_id": 1, "actual_remaining": 3}])
        services.reconciliation.count_vehicle_inventory(
            PLAN_ID, [{"cylinder_type_id": 1, "actual_remaining": 2, "variance_reason": "Recounted"}]
        )

        rows = services.reconciliation.get_vehicle_inventory(PLAN_ID)
        assert len(rows) == 1
        assert rows[0].variance == 0
        assert rows[0].variance_reason == "Recounted"

    def test_rejects_bad_items(self, services, cylinder_type):
        with pytest.raises(ValidationError):
            services.reconciliation.count_vehicle_inventory(PLAN_ID, [])
        with pytest.raises(ValidationError):
            services.reconciliation.count_vehicle_inventory(PLAN_ID, ["1:3"])
        with pytest.raises(ValidationError):
            services.reconciliation.count_vehicle_inventory(
                PLAN_ID,
                [{"cylinder_type_id": 1, "actual_remaining": 1}, {"cylinder_type_id": 1, "actual_remaining": 2}],
            )
        with pytest.raises(ValidationError):
            services.reconciliation.count_vehicle_inventory(PLAN_ID, [{"cylinder_type_id": 1, "actual_remaining": -1}])
