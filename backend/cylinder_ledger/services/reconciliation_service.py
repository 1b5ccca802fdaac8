# Overview: Delivery exchange tracking, daily reconciliation and end-of-day vehicle counts.

from __future__ import annotations

import logging
from datetime import date, datetime

from ..enums import (
    ExchangeVarianceType,
    RECONCILIATION_NEXT_STATUS,
    ReconciliationStatus,
    ResolutionStatus,
    VarianceDetailType,
    VarianceReason,
)
from ..models import (
    DailyReconciliation,
    ExchangeTrackingRecord,
    VarianceDetail,
    VehicleEndOfDayInventory,
)
from ..time_utils import utcnow
from ..validation import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
    parse_enum,
    parse_int,
    parse_optional_text,
)
from .concurrency import lock_for_update, run_in_transaction
from .delivery_lookup import DeliveryLookup
from .reference_service import ReferenceDirectory

"""
Exchange variance semantics (authoritative)

- variance_qty = empty_collected - expected_empty
- variance_type = MATCH (0), SHORTAGE (< 0), EXCESS (> 0)
- Values: quantity x cylinder type unit value (cents); records without a
  cylinder type are valued at 0.
- net_variance_value = excess_value - shortage_value - damage_value
- Expected vehicle remainder for a type = sum(filled_delivered - empty_collected)
  over the plan's records of that type plus records with no type.

Reconciliation status only moves forward one step at a time:
PENDING -> IN_PROGRESS -> COMPLETED -> APPROVED.

Nothing here touches inventory positions.
"""

logger = logging.getLogger(__name__)


def classify_variance(variance_qty: int) -> ExchangeVarianceType:
    if variance_qty == 0:
        return ExchangeVarianceType.MATCH
    if variance_qty < 0:
        return ExchangeVarianceType.SHORTAGE
    return ExchangeVarianceType.EXCESS


class ReconciliationEngine:
    def __init__(self, session, references: ReferenceDirectory, deliveries: DeliveryLookup):
        self.session = session
        self.references = references
        self.deliveries = deliveries

    # ------------------------------------------------------------------
    # Exchange tracking
    # ------------------------------------------------------------------

    def record_exchange(
        self,
        *,
        order_id,
        filled_delivered,
        empty_collected,
        expected_empty,
        plan_id=None,
        customer_id=None,
        cylinder_type_id=None,
        delivery_transaction_id=None,
        damaged_qty=0,
        variance_reason=None,
        notes=None,
        customer_acknowledged: bool = False,
        actor: int | None = None,
    ) -> ExchangeTrackingRecord:
        """
        Record the filled-for-empty exchange of one order.

        Args:
            order_id: Delivery order the exchange belongs to
            filled_delivered: Filled cylinders handed over
            empty_collected: Empty cylinders collected
            expected_empty: Empty cylinders the customer owed
            damaged_qty: Collected cylinders found damaged
            variance_reason: One of VarianceReason
            customer_acknowledged: Customer signed off at recording time

        Returns:
            ExchangeTrackingRecord: The persisted record

        Raises:
            ValidationError: negative quantities or an unknown reason
        """
        order_id = parse_int(order_id, "order_id", minimum=1)
        filled_delivered = parse_int(filled_delivered, "filled_delivered", minimum=0)
        empty_collected = parse_int(empty_collected, "empty_collected", minimum=0)
        expected_empty = parse_int(expected_empty, "expected_empty", minimum=0)
        damaged_qty = parse_int(damaged_qty, "damaged_qty", minimum=0, required=False) or 0
        plan_id = parse_int(plan_id, "plan_id", minimum=1, required=False)
        customer_id = parse_int(customer_id, "customer_id", minimum=1, required=False)
        cylinder_type_id = parse_int(cylinder_type_id, "cylinder_type_id", minimum=1, required=False)
        delivery_transaction_id = parse_int(
            delivery_transaction_id, "delivery_transaction_id", minimum=1, required=False
        )
        reason = parse_enum(VarianceReason, variance_reason, "variance_reason", required=False)
        notes = parse_optional_text(notes, "notes", max_length=2000)

        variance_qty = empty_collected - expected_empty
        variance_type = classify_variance(variance_qty)

        def _op():
            resolved_customer_id = customer_id
            if delivery_transaction_id is not None:
                delivery = self.deliveries.get(delivery_transaction_id)
                if resolved_customer_id is None:
                    resolved_customer_id = delivery.customer_id
            if cylinder_type_id is not None:
                self.references.require_cylinder_type(cylinder_type_id)

            now = utcnow()
            record = ExchangeTrackingRecord(
                order_id=order_id,
                plan_id=plan_id,
                customer_id=resolved_customer_id,
                cylinder_type_id=cylinder_type_id,
                delivery_transaction_id=delivery_transaction_id,
                filled_delivered=filled_delivered,
                empty_collected=empty_collected,
                expected_empty=expected_empty,
                damaged_qty=damaged_qty,
                variance_qty=variance_qty,
                variance_type=variance_type.value,
                variance_reason=reason.value if reason else None,
                customer_acknowledged=bool(customer_acknowledged),
                acknowledged_by=actor if customer_acknowledged else None,
                acknowledged_at=now if customer_acknowledged else None,
                notes=notes,
                recorded_by=actor,
                created_at=now,
            )
            self.session.add(record)
            self.session.flush()
            return record

        record = run_in_transaction(self.session, _op)
        logger.info(
            "Recorded exchange %s for order %s: %s (%+d)",
            record.id,
            order_id,
            variance_type.value,
            variance_qty,
            extra={"exchange_id": record.id, "order_id": order_id, "plan_id": plan_id, "variance_qty": variance_qty},
        )
        return record

    def acknowledge_exchange(self, exchange_id, actor: int) -> ExchangeTrackingRecord:
        """Customer sign-off; quantities are never touched."""
        exchange_id = parse_int(exchange_id, "exchange_id", minimum=1)

        def _op():
            record = lock_for_update(
                self.session.query(ExchangeTrackingRecord).filter_by(id=exchange_id)
            ).first()
            if record is None:
                raise NotFoundError(f"Exchange record {exchange_id} not found")
            if record.customer_acknowledged:
                raise ConflictError(f"Exchange record {exchange_id} is already acknowledged")
            record.customer_acknowledged = True
            record.acknowledged_by = actor
            record.acknowledged_at = utcnow()
            self.session.flush()
            return record

        return run_in_transaction(self.session, _op)

    def get_exchange(self, exchange_id) -> ExchangeTrackingRecord:
        exchange_id = parse_int(exchange_id, "exchange_id", minimum=1)
        record = self.session.get(ExchangeTrackingRecord, exchange_id)
        if record is None:
            raise NotFoundError(f"Exchange record {exchange_id} not found")
        return record

    def list_exchanges(
        self,
        *,
        plan_id=None,
        order_id=None,
        variance_type=None,
        customer_id=None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> list[ExchangeTrackingRecord]:
        plan_id = parse_int(plan_id, "plan_id", minimum=1, required=False)
        order_id = parse_int(order_id, "order_id", minimum=1, required=False)
        customer_id = parse_int(customer_id, "customer_id", minimum=1, required=False)
        variance_type = parse_enum(ExchangeVarianceType, variance_type, "variance_type", required=False)

        query = self.session.query(ExchangeTrackingRecord)
        if plan_id is not None:
            query = query.filter(ExchangeTrackingRecord.plan_id == plan_id)
        if order_id is not None:
            query = query.filter(ExchangeTrackingRecord.order_id == order_id)
        if customer_id is not None:
            query = query.filter(ExchangeTrackingRecord.customer_id == customer_id)
        if variance_type is not None:
            query = query.filter(ExchangeTrackingRecord.variance_type == variance_type.value)
        if date_from is not None:
            query = query.filter(ExchangeTrackingRecord.created_at >= date_from)
        if date_to is not None:
            query = query.filter(ExchangeTrackingRecord.created_at <= date_to)
        return query.order_by(ExchangeTrackingRecord.created_at.desc(), ExchangeTrackingRecord.id.desc()).all()

    def _plan_exchanges(self, plan_id: int) -> list[ExchangeTrackingRecord]:
        return (
            self.session.query(ExchangeTrackingRecord)
            .filter(ExchangeTrackingRecord.plan_id == plan_id)
            .order_by(ExchangeTrackingRecord.id)
            .all()
        )

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    def _totals(self, records: list[ExchangeTrackingRecord]) -> dict:
        totals = {
            "total_orders": len({record.order_id for record in records}),
            "total_exchanges": len(records),
            "total_shortages": 0,
            "total_excess": 0,
            "total_damage": 0,
            "shortage_value_cents": 0,
            "excess_value_cents": 0,
            "damage_value_cents": 0,
            "net_variance_value_cents": 0,
            "pending_acknowledgments": 0,
        }
        for record in records:
            unit = self.references.unit_value_cents(record.cylinder_type_id)
            if record.variance_qty < 0:
                totals["total_shortages"] += -record.variance_qty
                totals["shortage_value_cents"] += -record.variance_qty * unit
            elif record.variance_qty > 0:
                totals["total_excess"] += record.variance_qty
                totals["excess_value_cents"] += record.variance_qty * unit
            totals["total_damage"] += record.damaged_qty
            totals["damage_value_cents"] += record.damaged_qty * unit
            if not record.customer_acknowledged:
                totals["pending_acknowledgments"] += 1
        totals["net_variance_value_cents"] = (
            totals["excess_value_cents"] - totals["shortage_value_cents"] - totals["damage_value_cents"]
        )
        return totals

    def get_exchange_summary(self, plan_id) -> dict:
        plan_id = parse_int(plan_id, "plan_id", minimum=1)
        summary = {"plan_id": plan_id}
        summary.update(self._totals(self._plan_exchanges(plan_id)))
        return summary

    def get_exchange_variance_summary(self, plan_id) -> list[dict]:
        """Per customer variance totals for a plan, with open variance resolutions."""
        plan_id = parse_int(plan_id, "plan_id", minimum=1)

        by_customer: dict[int | None, list] = {}
        for record in self._plan_exchanges(plan_id):
            by_customer.setdefault(record.customer_id, []).append(record)

        pending_rows = (
            self.session.query(VarianceDetail.customer_id)
            .join(DailyReconciliation, VarianceDetail.reconciliation_id == DailyReconciliation.id)
            .filter(
                DailyReconciliation.plan_id == plan_id,
                VarianceDetail.resolution_status == ResolutionStatus.PENDING.value,
            )
            .all()
        )
        pending: dict[int | None, int] = {}
        for (customer_id,) in pending_rows:
            pending[customer_id] = pending.get(customer_id, 0) + 1

        result = []
        for customer_id, records in by_customer.items():
            totals = self._totals(records)
            if not (totals["total_shortages"] or totals["total_excess"] or totals["total_damage"]):
                continue
            result.append(
                {
                    "customer_id": customer_id,
                    "customer_name": self.references.location_name("CUSTOMER", customer_id),
                    "total_shortages": totals["total_shortages"],
                    "total_excess": totals["total_excess"],
                    "total_damage": totals["total_damage"],
                    "shortage_value_cents": totals["shortage_value_cents"],
                    "excess_value_cents": totals["excess_value_cents"],
                    "damage_value_cents": totals["damage_value_cents"],
                    "net_value_cents": totals["net_variance_value_cents"],
                    "pending_resolutions": pending.get(customer_id, 0),
                }
            )
        return result

    # ------------------------------------------------------------------
    # Daily reconciliation
    # ------------------------------------------------------------------

    def _variance_details(self, reconciliation: DailyReconciliation, records: list[ExchangeTrackingRecord]) -> list[VarianceDetail]:
        groups: dict[tuple, dict] = {}
        for record in records:
            group = groups.setdefault(
                (record.customer_id, record.cylinder_type_id),
                {
                    VarianceDetailType.SHORTAGE: [0, None],
                    VarianceDetailType.EXCESS: [0, None],
                    VarianceDetailType.DAMAGE: [0, None],
                },
            )
            if record.variance_qty < 0:
                entry = group[VarianceDetailType.SHORTAGE]
                entry[0] += -record.variance_qty
                entry[1] = entry[1] or record.variance_reason
            elif record.variance_qty > 0:
                entry = group[VarianceDetailType.EXCESS]
                entry[0] += record.variance_qty
                entry[1] = entry[1] or record.variance_reason
            if record.damaged_qty:
                entry = group[VarianceDetailType.DAMAGE]
                entry[0] += record.damaged_qty
                entry[1] = entry[1] or VarianceReason.DAMAGE.value

        details = []
        for (customer_id, cylinder_type_id), group in groups.items():
            unit = self.references.unit_value_cents(cylinder_type_id)
            for detail_type, (quantity, reason) in group.items():
                if quantity <= 0:
                    continue
                detail = VarianceDetail(
                    reconciliation_id=reconciliation.id,
                    customer_id=customer_id,
                    cylinder_type_id=cylinder_type_id,
                    variance_type=detail_type.value,
                    quantity=quantity,
                    unit_value_cents=unit,
                    total_value_cents=quantity * unit,
                    variance_reason=reason,
                    resolution_status=ResolutionStatus.PENDING.value,
                )
                self.session.add(detail)
                details.append(detail)
        return details

    def create_daily_reconciliation(
        self,
        plan_id,
        reconciled_by: int,
        *,
        notes=None,
        reconciliation_date: date | None = None,
    ) -> DailyReconciliation:
        """
        Create the PENDING reconciliation of a plan with totals and variance details.

        Raises:
            ConflictError: the plan already has a reconciliation for that date
        """
        plan_id = parse_int(plan_id, "plan_id", minimum=1)
        notes = parse_optional_text(notes, "reconciliation_notes", max_length=2000)
        on = reconciliation_date or utcnow().date()

        def _op():
            existing = (
                self.session.query(DailyReconciliation)
                .filter_by(plan_id=plan_id, reconciliation_date=on)
                .first()
            )
            if existing is not None:
                raise ConflictError(f"Plan {plan_id} already has reconciliation {existing.id} for {on.isoformat()}")

            records = self._plan_exchanges(plan_id)
            totals = self._totals(records)
            reconciliation = DailyReconciliation(
                plan_id=plan_id,
                reconciliation_date=on,
                total_orders=totals["total_orders"],
                total_exchanges=totals["total_exchanges"],
                total_shortages=totals["total_shortages"],
                total_excess=totals["total_excess"],
                total_damage=totals["total_damage"],
                shortage_value_cents=totals["shortage_value_cents"],
                excess_value_cents=totals["excess_value_cents"],
                damage_value_cents=totals["damage_value_cents"],
                net_variance_value_cents=totals["net_variance_value_cents"],
                status=ReconciliationStatus.PENDING.value,
                reconciled_by=reconciled_by,
                reconciliation_notes=notes,
            )
            self.session.add(reconciliation)
            self.session.flush()
            self._variance_details(reconciliation, records)
            self.session.flush()
            return reconciliation

        reconciliation = run_in_transaction(self.session, _op)
        logger.info(
            "Created reconciliation %s for plan %s",
            reconciliation.id,
            plan_id,
            extra={"reconciliation_id": reconciliation.id, "plan_id": plan_id, "reconciliation_status": reconciliation.status},
        )
        return reconciliation

    def update_reconciliation_status(self, reconciliation_id, status, updated_by: int) -> DailyReconciliation:
        """
        Advance a reconciliation exactly one step.

        Raises:
            NotFoundError: unknown reconciliation
            InvalidTransitionError: skipping a step, regressing, or repeating a status
        """
        reconciliation_id = parse_int(reconciliation_id, "reconciliation_id", minimum=1)
        target = parse_enum(ReconciliationStatus, status, "status")

        def _op():
            reconciliation = lock_for_update(
                self.session.query(DailyReconciliation).filter_by(id=reconciliation_id)
            ).first()
            if reconciliation is None:
                raise NotFoundError(f"Reconciliation {reconciliation_id} not found")

            current = ReconciliationStatus(reconciliation.status)
            allowed = RECONCILIATION_NEXT_STATUS.get(current)
            if allowed != target:
                expected = allowed.value if allowed else "none (terminal)"
                raise InvalidTransitionError(
                    f"Cannot move reconciliation {reconciliation_id} from {current.value} to {target.value}; "
                    f"next allowed status is {expected}"
                )

            reconciliation.status = target.value
            reconciliation.status_updated_by = updated_by
            if target == ReconciliationStatus.APPROVED:
                reconciliation.approved_by = updated_by
                reconciliation.approved_at = utcnow()
            self.session.flush()
            return reconciliation, current

        reconciliation, previous = run_in_transaction(self.session, _op)
        logger.info(
            "Reconciliation %s %s -> %s by user %s",
            reconciliation_id,
            previous.value,
            target.value,
            updated_by,
            extra={"reconciliation_id": reconciliation_id, "reconciliation_status": target.value},
        )
        return reconciliation

    def approve_reconciliation(self, reconciliation_id, approved_by: int) -> DailyReconciliation:
        """COMPLETED -> APPROVED."""
        return self.update_reconciliation_status(reconciliation_id, ReconciliationStatus.APPROVED, approved_by)

    def update_variance_resolution(self, detail_id, resolution_status, notes=None) -> VarianceDetail:
        detail_id = parse_int(detail_id, "variance_detail_id", minimum=1)
        resolution_status = parse_enum(ResolutionStatus, resolution_status, "resolution_status")
        notes = parse_optional_text(notes, "resolution_notes", max_length=2000)

        def _op():
            detail = self.session.get(VarianceDetail, detail_id)
            if detail is None:
                raise NotFoundError(f"Variance detail {detail_id} not found")
            detail.resolution_status = resolution_status.value
            if notes is not None:
                detail.resolution_notes = notes
            self.session.flush()
            return detail

        detail = run_in_transaction(self.session, _op)
        logger.info("Variance detail %s marked %s", detail_id, resolution_status.value)
        return detail

    def get_reconciliation(self, reconciliation_id) -> DailyReconciliation:
        reconciliation_id = parse_int(reconciliation_id, "reconciliation_id", minimum=1)
        reconciliation = self.session.get(DailyReconciliation, reconciliation_id)
        if reconciliation is None:
            raise NotFoundError(f"Reconciliation {reconciliation_id} not found")
        return reconciliation

    def describe_reconciliation(self, reconciliation: DailyReconciliation) -> dict:
        data = reconciliation.to_dict()
        data["variance_details"] = [detail.to_dict() for detail in reconciliation.variance_details]
        data["vehicle_inventory"] = [row.to_dict() for row in self.get_vehicle_inventory(reconciliation.plan_id)]
        return data

    def list_reconciliations(
        self,
        *,
        plan_id=None,
        status=None,
        reconciled_by=None,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[DailyReconciliation]:
        plan_id = parse_int(plan_id, "plan_id", minimum=1, required=False)
        reconciled_by = parse_int(reconciled_by, "reconciled_by", minimum=1, required=False)
        status = parse_enum(ReconciliationStatus, status, "status", required=False)

        query = self.session.query(DailyReconciliation)
        if plan_id is not None:
            query = query.filter(DailyReconciliation.plan_id == plan_id)
        if status is not None:
            query = query.filter(DailyReconciliation.status == status.value)
        if reconciled_by is not None:
            query = query.filter(DailyReconciliation.reconciled_by == reconciled_by)
        if date_from is not None:
            query = query.filter(DailyReconciliation.reconciliation_date >= date_from)
        if date_to is not None:
            query = query.filter(DailyReconciliation.reconciliation_date <= date_to)
        return query.order_by(DailyReconciliation.reconciliation_date.desc(), DailyReconciliation.id.desc()).all()

    # ------------------------------------------------------------------
    # Vehicle end-of-day counts
    # ------------------------------------------------------------------

    def expected_vehicle_remaining(self, records: list[ExchangeTrackingRecord], cylinder_type_id: int) -> int:
        return sum(
            record.filled_delivered - record.empty_collected
            for record in records
            if record.cylinder_type_id is None or record.cylinder_type_id == cylinder_type_id
        )

    def count_vehicle_inventory(self, plan_id, items: list[dict], counted_by: int | None = None) -> list[VehicleEndOfDayInventory]:
        """
        Record counted vs. expected cylinders per type; a recount replaces the previous count.

        Args:
            plan_id: Delivery plan whose vehicle is counted
            items: [{cylinder_type_id, actual_remaining, variance_reason?}]
            counted_by: User performing the count

        Returns:
            list[VehicleEndOfDayInventory]: one row per counted type
        """
        plan_id = parse_int(plan_id, "plan_id", minimum=1)
        if not items:
            raise ValidationError("At least one inventory item is required")

        parsed = []
        seen = set()
        for index, item in enumerate(items):
            if not isinstance(item, dict):
                raise ValidationError(f"items[{index}] must be an object")
            type_id = parse_int(item.get("cylinder_type_id"), f"items[{index}].cylinder_type_id", minimum=1)
            if type_id in seen:
                raise ValidationError(f"Cylinder type {type_id} is counted twice")
            seen.add(type_id)
            actual = parse_int(item.get("actual_remaining"), f"items[{index}].actual_remaining", minimum=0)
            reason = parse_optional_text(item.get("variance_reason"), f"items[{index}].variance_reason", max_length=64)
            parsed.append((type_id, actual, reason))

        def _op():
            records = self._plan_exchanges(plan_id)
            now = utcnow()
            rows = []
            for type_id, actual, reason in parsed:
                expected = self.expected_vehicle_remaining(records, type_id)
                row = (
                    self.session.query(VehicleEndOfDayInventory)
                    .filter_by(plan_id=plan_id, cylinder_type_id=type_id)
                    .first()
                )
                if row is None:
                    row = VehicleEndOfDayInventory(plan_id=plan_id, cylinder_type_id=type_id)
                    self.session.add(row)
                row.expected_remaining = expected
                row.actual_remaining = actual
                row.variance = actual - expected
                row.variance_reason = reason
                row.counted_by = counted_by
                row.counted_at = now
                rows.append(row)
            self.session.flush()
            return rows

        rows = run_in_transaction(self.session, _op)
        for row in rows:
            if row.variance:
                logger.info(
                    "Vehicle count variance for plan %s type %s: expected %s, counted %s",
                    plan_id,
                    row.cylinder_type_id,
                    row.expected_remaining,
                    row.actual_remaining,
                    extra={"plan_id": plan_id, "cylinder_type_id": row.cylinder_type_id, "variance": row.variance},
                )
        return rows

    def get_vehicle_inventory(self, plan_id) -> list[VehicleEndOfDayInventory]:
        plan_id = parse_int(plan_id, "plan_id", minimum=1)
        return (
            self.session.query(VehicleEndOfDayInventory)
            .filter_by(plan_id=plan_id)
            .order_by(VehicleEndOfDayInventory.cylinder_type_id)
            .all()
        )
