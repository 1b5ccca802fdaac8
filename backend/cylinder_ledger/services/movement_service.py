# Overview: Validated, atomic cylinder movements plus inventory summaries and movement log reads.

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime

from ..enums import CylinderStatus, LocationKind, MovementType
from ..models import InventoryPosition, MovementRecord
from ..validation import InsufficientQuantityError, ValidationError, parse_enum, parse_int, parse_optional_text
from .concurrency import run_in_transaction
from .delivery_lookup import DeliveryLookup
from .inventory_store import Location, LocationInventoryStore
from .movement_ledger import MovementLedger
from .movement_validator import MovementRequest, MovementValidator, ValidationResult, skips_stock_check
from .reference_service import ReferenceDirectory

"""
Movement application (authoritative)

A movement is applied as ONE unit inside the caller's transaction:
1. validate (table, stock, business rules); nothing is written on failure
2. decrement the source position (when there is a source); ADJUSTMENT and
   REFILLING sources skip the stock check and are decremented to zero at most
3. increment the destination position
4. append exactly one MovementRecord

Movements carrying an idempotency_key are applied at most once: a repeat
returns the record written the first time and touches no position.

Public record_* / initialize_* methods own their transaction (commit on
success, rollback on any error). apply() does not commit; the outbox uses
it to combine a movement with its own bookkeeping.
"""

logger = logging.getLogger(__name__)

DEFAULT_MOVEMENT_LOG_LIMIT = 100


def _location_token(location: Location | None, status: CylinderStatus | None) -> str:
    if location is None:
        return "-"
    ref = "-" if location.reference_id is None else str(location.reference_id)
    return f"{location.kind.value}:{ref}:{status.value if status is not None else '-'}"


def movement_idempotency_key(movement: MovementRequest) -> str:
    """(movement type, reference transaction, cylinder type, from, to) as one string."""
    movement = movement.normalized()
    ref = "-" if movement.reference_transaction_id is None else str(movement.reference_transaction_id)
    return "|".join(
        [
            movement.movement_type.value,
            ref,
            str(movement.cylinder_type_id),
            _location_token(movement.from_location, movement.from_status),
            _location_token(movement.to_location, movement.to_status),
        ]
    )


def gr_approval_movement(
    *,
    delivery_id: int,
    cylinder_type_id: int,
    quantity: int,
    vehicle_id: int | None,
    customer_id: int,
    actor: int | None,
) -> MovementRequest:
    """Filled cylinders handed over VEHICLE -> CUSTOMER when a GR is approved."""
    return MovementRequest(
        cylinder_type_id=cylinder_type_id,
        quantity=quantity,
        movement_type=MovementType.DELIVERY,
        from_location=Location(LocationKind.VEHICLE, vehicle_id),
        from_status=CylinderStatus.FILLED,
        to_location=Location(LocationKind.CUSTOMER, customer_id),
        to_status=CylinderStatus.FILLED,
        reference_transaction_id=delivery_id,
        moved_by=actor,
        notes=f"GR approval for delivery {delivery_id}",
    )


def return_movements(
    *,
    delivery_id: int,
    cylinder_type_id: int,
    delivered_qty: int,
    returned_qty: int,
    vehicle_id: int | None,
    customer_id: int,
    actor: int | None,
) -> list[MovementRequest]:
    """
    Movements closing out one delivery line, in application order.

    returned > 0: CUSTOMER -> VEHICLE (returned), then VEHICLE -> YARD (delivered - returned, if > 0)
    returned = 0: VEHICLE -> YARD (delivered)

    Returned cylinders keep FILLED status.
    """
    movements = []
    if returned_qty > 0:
        movements.append(
            MovementRequest(
                cylinder_type_id=cylinder_type_id,
                quantity=returned_qty,
                movement_type=MovementType.RETURN,
                from_location=Location(LocationKind.CUSTOMER, customer_id),
                from_status=CylinderStatus.FILLED,
                to_location=Location(LocationKind.VEHICLE, vehicle_id),
                to_status=CylinderStatus.FILLED,
                reference_transaction_id=delivery_id,
                moved_by=actor,
                notes=f"Returned by customer on delivery {delivery_id}",
            )
        )
        to_yard = delivered_qty - returned_qty
    else:
        to_yard = delivered_qty

    if to_yard > 0:
        movements.append(
            MovementRequest(
                cylinder_type_id=cylinder_type_id,
                quantity=to_yard,
                movement_type=MovementType.RETURN,
                from_location=Location(LocationKind.VEHICLE, vehicle_id),
                from_status=CylinderStatus.FILLED,
                to_location=Location(LocationKind.YARD),
                to_status=CylinderStatus.FILLED,
                reference_transaction_id=delivery_id,
                moved_by=actor,
                notes=f"Vehicle unload for delivery {delivery_id}",
            )
        )
    return movements


class CylinderMovementService:
    """
    Entry point for every inventory mutation and read.

    Collaborators are injected; build one per session with
    services.wiring.build_services().
    """

    def __init__(
        self,
        session,
        store: LocationInventoryStore,
        ledger: MovementLedger,
        validator: MovementValidator,
        references: ReferenceDirectory,
        deliveries: DeliveryLookup,
        *,
        max_log_limit: int = 1000,
        large_initialization_threshold: int = 50,
    ):
        self.session = session
        self.store = store
        self.ledger = ledger
        self.validator = validator
        self.references = references
        self.deliveries = deliveries
        self.max_log_limit = max_log_limit
        self.large_initialization_threshold = large_initialization_threshold

    # ------------------------------------------------------------------
    # Core pipeline
    # ------------------------------------------------------------------

    def validate_movement(self, movement: MovementRequest) -> ValidationResult:
        return self.validator.validate(movement)

    def apply(self, movement: MovementRequest) -> tuple[MovementRecord, bool]:
        """
        Validate and apply one movement inside the current transaction.

        Returns:
            (record, created): created is False when the idempotency key was already applied

        Raises:
            InsufficientQuantityError: source position lacks stock
            ValidationError: any other rule violation
        """
        movement = movement.normalized()

        if movement.idempotency_key:
            existing = self.ledger.find_by_idempotency_key(movement.idempotency_key)
            if existing is not None:
                logger.info(
                    "Movement %s already applied for key %s",
                    existing.id,
                    movement.idempotency_key,
                    extra={"movement_id": existing.id, "idempotency_key": movement.idempotency_key},
                )
                return existing, False

        result = self.validator.validate(movement)
        if not result.is_valid:
            logger.info(
                "Rejected %s movement of %s x type %s: %s",
                movement.movement_type.value,
                movement.quantity,
                movement.cylinder_type_id,
                "; ".join(result.errors),
                extra={
                    "movement_type": movement.movement_type.value,
                    "cylinder_type_id": movement.cylinder_type_id,
                    "quantity": movement.quantity,
                    "errors": result.errors,
                },
            )
            if result.shortfall is not None:
                err = InsufficientQuantityError(
                    "; ".join(result.errors),
                    available=result.available,
                    requested=movement.quantity,
                )
                err.errors = list(result.errors)
                raise err
            raise ValidationError("Invalid movement: " + "; ".join(result.errors), errors=result.errors)

        for warning in result.warnings:
            logger.warning("Movement warning: %s", warning, extra={"movement_type": movement.movement_type.value})

        if movement.from_location is not None and movement.from_status is not None:
            taken = movement.quantity
            if skips_stock_check(movement):
                # Source is drained to zero at most
                available = self.store.get(movement.cylinder_type_id, movement.from_location, movement.from_status)
                taken = min(taken, available)
            self.store.adjust(
                movement.cylinder_type_id,
                movement.from_location,
                movement.from_status,
                -taken,
                movement.moved_by,
            )
        self.store.adjust(
            movement.cylinder_type_id,
            movement.to_location,
            movement.to_status,
            movement.quantity,
            movement.moved_by,
        )

        record = MovementRecord(
            cylinder_type_id=movement.cylinder_type_id,
            quantity=movement.quantity,
            movement_type=movement.movement_type.value,
            from_location_kind=movement.from_location.kind.value if movement.from_location else None,
            from_location_reference_id=movement.from_location.reference_id if movement.from_location else None,
            from_status=movement.from_status.value if movement.from_status else None,
            to_location_kind=movement.to_location.kind.value,
            to_location_reference_id=movement.to_location.reference_id,
            to_status=movement.to_status.value,
            reference_transaction_id=movement.reference_transaction_id,
            moved_by=movement.moved_by,
            notes=movement.notes,
            idempotency_key=movement.idempotency_key,
        )
        self.ledger.append(record)

        logger.info(
            "Applied %s movement %s: %s x type %s %s -> %s",
            record.movement_type,
            record.id,
            record.quantity,
            record.cylinder_type_id,
            _location_token(movement.from_location, movement.from_status),
            _location_token(movement.to_location, movement.to_status),
            extra={
                "movement_id": record.id,
                "movement_type": record.movement_type,
                "cylinder_type_id": record.cylinder_type_id,
                "quantity": record.quantity,
                "from_location": _location_token(movement.from_location, movement.from_status),
                "to_location": _location_token(movement.to_location, movement.to_status),
                "reference_transaction_id": record.reference_transaction_id,
            },
        )
        return record, True

    def _apply_all(self, movements: list[MovementRequest]) -> list[MovementRecord]:
        def _op():
            return [self.apply(movement)[0] for movement in movements]
        return run_in_transaction(self.session, _op)

    # ------------------------------------------------------------------
    # Recording operations
    # ------------------------------------------------------------------

    def record_movement(self, movement: MovementRequest) -> MovementRecord:
        """
        Apply one movement in its own transaction.

        Callers without a status dimension may omit statuses; both ends then
        default to FILLED.
        """
        from_status = movement.from_status
        if movement.from_location is not None and from_status is None:
            from_status = CylinderStatus.FILLED
        movement = replace(
            movement,
            to_status=movement.to_status if movement.to_status is not None else CylinderStatus.FILLED,
            from_status=from_status,
        )
        self.references.require_cylinder_type(movement.cylinder_type_id)
        return self._apply_all([movement])[0]

    def record_delivery_movement(
        self,
        delivery_id: int,
        cylinder_type_id: int,
        quantity: int,
        vehicle_id: int,
        actor: int | None = None,
    ) -> MovementRecord:
        """Load filled cylinders for a delivery: YARD -> VEHICLE(vehicle_id)."""
        movement = MovementRequest(
            cylinder_type_id=cylinder_type_id,
            quantity=quantity,
            movement_type=MovementType.DELIVERY,
            from_location=Location(LocationKind.YARD),
            from_status=CylinderStatus.FILLED,
            to_location=Location(LocationKind.VEHICLE, vehicle_id),
            to_status=CylinderStatus.FILLED,
            reference_transaction_id=delivery_id,
            moved_by=actor,
            notes=f"Loaded for delivery {delivery_id}",
        )
        self.references.require_cylinder_type(cylinder_type_id)
        return self._apply_all([movement])[0]

    def record_gr_approval_movement(
        self,
        delivery_id: int,
        cylinder_type_id: int,
        quantity: int,
        actor: int | None = None,
        *,
        vehicle_id: int | None = None,
        customer_id: int | None = None,
    ) -> MovementRecord:
        """Hand over filled cylinders VEHICLE -> CUSTOMER; locations default to the delivery's own."""
        if vehicle_id is None or customer_id is None:
            delivery = self.deliveries.get(delivery_id)
            vehicle_id = delivery.vehicle_id if vehicle_id is None else vehicle_id
            customer_id = delivery.customer_id if customer_id is None else customer_id

        movement = gr_approval_movement(
            delivery_id=delivery_id,
            cylinder_type_id=cylinder_type_id,
            quantity=quantity,
            vehicle_id=vehicle_id,
            customer_id=customer_id,
            actor=actor,
        )
        movement.idempotency_key = movement_idempotency_key(movement)
        self.references.require_cylinder_type(cylinder_type_id)
        return self._apply_all([movement])[0]

    def record_return_movement(
        self,
        delivery_id: int,
        cylinder_type_id: int,
        delivered_qty: int,
        returned_qty: int,
        actor: int | None = None,
        *,
        vehicle_id: int | None = None,
        customer_id: int | None = None,
    ) -> list[MovementRecord]:
        """
        Close out one delivery line (all legs commit together or not at all).

        Args:
            delivery_id: delivery transaction the movements reference
            cylinder_type_id: cylinder type of the line
            delivered_qty: quantity delivered on the line
            returned_qty: quantity the customer handed back
            actor: user recording the return

        Returns:
            list[MovementRecord]: one or two records in application order

        Raises:
            ValidationError: negative quantities
            InsufficientQuantityError: a leg's source lacks stock
        """
        delivered_qty = parse_int(delivered_qty, "delivered_qty", minimum=0)
        returned_qty = parse_int(returned_qty, "returned_qty", minimum=0)

        if vehicle_id is None or customer_id is None:
            delivery = self.deliveries.get(delivery_id)
            vehicle_id = delivery.vehicle_id if vehicle_id is None else vehicle_id
            customer_id = delivery.customer_id if customer_id is None else customer_id

        movements = return_movements(
            delivery_id=delivery_id,
            cylinder_type_id=cylinder_type_id,
            delivered_qty=delivered_qty,
            returned_qty=returned_qty,
            vehicle_id=vehicle_id,
            customer_id=customer_id,
            actor=actor,
        )
        if not movements:
            return []
        for movement in movements:
            movement.idempotency_key = movement_idempotency_key(movement)
        self.references.require_cylinder_type(cylinder_type_id)
        return self._apply_all(movements)

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def _seed_movements(
        self,
        items: list[dict],
        location: Location,
        actor: int | None,
        *,
        default_status: CylinderStatus,
        note: str,
    ) -> list[MovementRequest]:
        if not items:
            raise ValidationError("At least one inventory item is required")

        movements = []
        for index, item in enumerate(items):
            if not isinstance(item, dict):
                raise ValidationError(f"items[{index}] must be an object")
            type_id = parse_int(item.get("cylinder_type_id"), f"items[{index}].cylinder_type_id", minimum=1)
            quantity = parse_int(item.get("quantity"), f"items[{index}].quantity")
            status = parse_enum(CylinderStatus, item.get("status"), f"items[{index}].status", required=False)
            status = status or default_status

            if quantity <= 0:
                logger.info("Skipping initialization of type %s with quantity %s", type_id, quantity)
                continue
            if quantity > self.large_initialization_threshold:
                logger.warning(
                    "Large initialization: %s x type %s into %s",
                    quantity,
                    type_id,
                    location.kind.value,
                    extra={"cylinder_type_id": type_id, "quantity": quantity, "location_kind": location.kind.value},
                )
            self.references.require_cylinder_type(type_id)
            movements.append(
                MovementRequest(
                    cylinder_type_id=type_id,
                    quantity=quantity,
                    movement_type=MovementType.ADJUSTMENT,
                    to_location=location,
                    to_status=status,
                    moved_by=actor,
                    notes=note,
                )
            )
        return movements

    def initialize_inventory(self, items: list[dict], actor: int | None = None) -> list[MovementRecord]:
        """Seed filled stock into the YARD; non-positive quantities are skipped."""
        movements = self._seed_movements(
            items,
            Location(LocationKind.YARD),
            actor,
            default_status=CylinderStatus.FILLED,
            note="Initial inventory",
        )
        if not movements:
            return []
        return self._apply_all(movements)

    def initialize_location(
        self,
        kind: LocationKind,
        reference_id: int | None,
        items: list[dict],
        actor: int | None = None,
    ) -> list[MovementRecord]:
        """Seed stock at any location; each item may carry its own status (FILLED by default)."""
        kind = parse_enum(LocationKind, kind, "location_kind")
        location = Location(kind, reference_id).normalized()
        if location.reference_id is None and kind in (LocationKind.VEHICLE, LocationKind.CUSTOMER):
            raise ValidationError(f"{kind.value} locations require a reference id")
        movements = self._seed_movements(
            items,
            location,
            actor,
            default_status=CylinderStatus.FILLED,
            note=f"Initial inventory at {kind.value}",
        )
        if not movements:
            return []
        return self._apply_all(movements)

    # ------------------------------------------------------------------
    # Inventory reads
    # ------------------------------------------------------------------

    def _position_dict(self, position: InventoryPosition) -> dict:
        data = position.to_dict()
        data["capacity"] = position.cylinder_type.capacity if position.cylinder_type else None
        data["ref_name"] = self.references.location_name(position.location_kind, position.location_reference_id)
        return data

    def get_inventory_summary(self) -> list[dict]:
        """Per cylinder type: every non-zero position plus filled/empty/total quantities."""
        summary: dict[int, dict] = {}
        for position in self.store.query():
            entry = summary.get(position.cylinder_type_id)
            if entry is None:
                cylinder_type = position.cylinder_type
                entry = summary[position.cylinder_type_id] = {
                    "cylinder_type_id": position.cylinder_type_id,
                    "capacity": cylinder_type.capacity if cylinder_type else None,
                    "description": cylinder_type.description if cylinder_type else None,
                    "locations": [],
                    "filled_quantity": 0,
                    "empty_quantity": 0,
                    "total_quantity": 0,
                }
            entry["locations"].append(
                {
                    "kind": position.location_kind,
                    "reference_id": position.location_reference_id,
                    "ref_name": self.references.location_name(position.location_kind, position.location_reference_id),
                    "status": position.cylinder_status,
                    "quantity": position.quantity,
                }
            )
            if position.cylinder_status == CylinderStatus.FILLED.value:
                entry["filled_quantity"] += position.quantity
            else:
                entry["empty_quantity"] += position.quantity
            entry["total_quantity"] += position.quantity
        return list(summary.values())

    def get_location_summary(self) -> list[dict]:
        """Per (location kind, reference): quantities by cylinder type and status."""
        summary: dict[tuple[str, int | None], dict] = {}
        for position in self.store.query():
            key = (position.location_kind, position.location_reference_id)
            entry = summary.get(key)
            if entry is None:
                entry = summary[key] = {
                    "kind": position.location_kind,
                    "reference_id": position.location_reference_id,
                    "ref_name": self.references.location_name(position.location_kind, position.location_reference_id),
                    "cylinder_types": [],
                    "total_cylinders": 0,
                }
            entry["cylinder_types"].append(
                {
                    "cylinder_type_id": position.cylinder_type_id,
                    "capacity": position.cylinder_type.capacity if position.cylinder_type else None,
                    "status": position.cylinder_status,
                    "quantity": position.quantity,
                }
            )
            entry["total_cylinders"] += position.quantity
        return sorted(
            summary.values(),
            key=lambda item: (item["kind"], item["reference_id"] is not None, item["reference_id"] or 0),
        )

    def get_inventory_by_location(
        self,
        kind: LocationKind,
        reference_id: int | None = None,
        status: CylinderStatus | None = None,
    ) -> list[dict]:
        kind = parse_enum(LocationKind, kind, "location_kind")
        status = parse_enum(CylinderStatus, status, "status", required=False)
        positions = self.store.query(location_kind=kind, location_reference_id=reference_id, status=status)
        return [self._position_dict(position) for position in positions]

    def get_available_quantity(
        self,
        cylinder_type_id: int,
        kind: LocationKind,
        reference_id: int | None = None,
        status: CylinderStatus = CylinderStatus.FILLED,
    ) -> int:
        kind = parse_enum(LocationKind, kind, "location_kind")
        status = parse_enum(CylinderStatus, status, "status")
        return self.store.get(cylinder_type_id, Location(kind, reference_id), status)

    # ------------------------------------------------------------------
    # Movement log reads
    # ------------------------------------------------------------------

    def movement_dict(self, record: MovementRecord) -> dict:
        data = record.to_dict()
        if data["from_location"] is not None:
            data["from_location"]["name"] = self.references.location_name(
                record.from_location_kind, record.from_location_reference_id
            )
        data["to_location"]["name"] = self.references.location_name(
            record.to_location_kind, record.to_location_reference_id
        )
        return data

    def get_movement_logs(self, limit=DEFAULT_MOVEMENT_LOG_LIMIT, offset=0) -> list[MovementRecord]:
        limit = parse_int(limit, "limit", minimum=1)
        offset = parse_int(offset, "offset", minimum=0)
        if limit > self.max_log_limit:
            raise ValidationError(f"limit must be between 1 and {self.max_log_limit}")
        return self.ledger.query(limit=limit, offset=offset)

    def get_movements_by_cylinder_type(self, cylinder_type_id) -> list[MovementRecord]:
        cylinder_type_id = parse_int(cylinder_type_id, "cylinder_type_id", minimum=1)
        return self.ledger.query(cylinder_type_id=cylinder_type_id)

    def get_movements_by_transaction(self, reference_transaction_id) -> list[MovementRecord]:
        reference_transaction_id = parse_int(reference_transaction_id, "reference_transaction_id", minimum=1)
        return self.ledger.query(reference_transaction_id=reference_transaction_id)

    def query_movements(
        self,
        *,
        cylinder_type_id=None,
        reference_transaction_id=None,
        movement_type=None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit=DEFAULT_MOVEMENT_LOG_LIMIT,
        offset=0,
    ) -> list[MovementRecord]:
        cylinder_type_id = parse_int(cylinder_type_id, "cylinder_type_id", minimum=1, required=False)
        reference_transaction_id = parse_int(
            reference_transaction_id, "reference_transaction_id", minimum=1, required=False
        )
        movement_type = parse_enum(MovementType, movement_type, "movement_type", required=False)
        limit = parse_int(limit, "limit", minimum=1)
        offset = parse_int(offset, "offset", minimum=0)
        if limit > self.max_log_limit:
            raise ValidationError(f"limit must be between 1 and {self.max_log_limit}")
        if since is not None and until is not None and since > until:
            raise ValidationError("since must not be after until")
        return self.ledger.query(
            cylinder_type_id=cylinder_type_id,
            reference_transaction_id=reference_transaction_id,
            movement_type=movement_type.value if movement_type else None,
            since=since,
            until=until,
            limit=limit,
            offset=offset,
        )


def parse_movement_request(data: dict, actor: int | None) -> MovementRequest:
    """
    Build a MovementRequest from a JSON-style mapping.

    Shape: {cylinder_type_id, quantity, movement_type,
            from_location: {kind, reference_id?, status?}?,
            to_location: {kind, reference_id?, status?},
            reference_transaction_id?, notes?}
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")

    def _location(raw, field):
        if raw is None:
            return None, None
        if not isinstance(raw, dict):
            raise ValidationError(f"{field} must be an object")
        kind = parse_enum(LocationKind, raw.get("kind") or raw.get("type"), f"{field}.kind")
        ref = parse_int(raw.get("reference_id"), f"{field}.reference_id", minimum=1, required=False)
        status = parse_enum(CylinderStatus, raw.get("status"), f"{field}.status", required=False)
        return Location(kind, ref), status

    from_location, from_status = _location(data.get("from_location"), "from_location")
    to_location, to_status = _location(data.get("to_location"), "to_location")
    if to_location is None:
        raise ValidationError("to_location is required")

    return MovementRequest(
        cylinder_type_id=parse_int(data.get("cylinder_type_id"), "cylinder_type_id", minimum=1),
        quantity=parse_int(data.get("quantity"), "quantity"),
        movement_type=parse_enum(MovementType, data.get("movement_type"), "movement_type"),
        from_location=from_location,
        from_status=from_status,
        to_location=to_location,
        to_status=to_status,
        reference_transaction_id=parse_int(
            data.get("reference_transaction_id"), "reference_transaction_id", minimum=1, required=False
        ),
        moved_by=actor,
        notes=parse_optional_text(data.get("notes"), "notes"),
    )
