# Overview: Legality rules for cylinder movements (transition table, stock sufficiency, business rules).

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from ..enums import CylinderStatus, LocationKind, MovementType
from .inventory_store import Location, LocationInventoryStore

"""
Movement transition table (authoritative)

| movement type   | status rule    | from kinds      | to kinds          |
|-----------------|----------------|-----------------|-------------------|
| DELIVERY_FILLED | FILLED->FILLED | YARD, VEHICLE   | CUSTOMER, VEHICLE |
| RETURN_EMPTY    | FILLED->EMPTY  | CUSTOMER, VEHICLE | PLANT, VEHICLE  |
| REFILLING_OUT   | EMPTY->FILLED  | PLANT, REFILLING | YARD             |
| RETURN_FILLED   | FILLED->FILLED | any             | any               |

Every other type (ADJUSTMENT, TRANSFER, DELIVERY, RETURN, REFILLING,
DELIVERY_EMPTY, REFILLING_IN) carries no status/kind constraint.

Rules applied by validate():
1. quantity > 0
2. status/kind pairing per the table
3. source stock >= quantity, except ADJUSTMENT and a REFILLING source
4. from and to positions must differ
5. empty cylinders never land at a CUSTOMER
Warnings never block.
"""


@dataclass(frozen=True)
class TransitionRule:
    from_status: CylinderStatus
    to_status: CylinderStatus
    from_kinds: Optional[frozenset] = None  # None = any
    to_kinds: Optional[frozenset] = None


TRANSITION_TABLE = {
    MovementType.DELIVERY_FILLED: TransitionRule(
        CylinderStatus.FILLED,
        CylinderStatus.FILLED,
        frozenset({LocationKind.YARD, LocationKind.VEHICLE}),
        frozenset({LocationKind.CUSTOMER, LocationKind.VEHICLE}),
    ),
    MovementType.RETURN_EMPTY: TransitionRule(
        CylinderStatus.FILLED,
        CylinderStatus.EMPTY,
        frozenset({LocationKind.CUSTOMER, LocationKind.VEHICLE}),
        frozenset({LocationKind.PLANT, LocationKind.VEHICLE}),
    ),
    MovementType.REFILLING_OUT: TransitionRule(
        CylinderStatus.EMPTY,
        CylinderStatus.FILLED,
        frozenset({LocationKind.PLANT, LocationKind.REFILLING}),
        frozenset({LocationKind.YARD}),
    ),
    MovementType.RETURN_FILLED: TransitionRule(
        CylinderStatus.FILLED,
        CylinderStatus.FILLED,
    ),
}


@dataclass
class MovementRequest:
    """A requested quantity transfer; from_location is absent when stock is created."""

    cylinder_type_id: int
    quantity: int
    movement_type: MovementType
    to_location: Location
    to_status: CylinderStatus
    from_location: Optional[Location] = None
    from_status: Optional[CylinderStatus] = None
    reference_transaction_id: Optional[int] = None
    moved_by: Optional[int] = None
    notes: Optional[str] = None
    idempotency_key: Optional[str] = None

    def normalized(self) -> "MovementRequest":
        return MovementRequest(
            cylinder_type_id=self.cylinder_type_id,
            quantity=self.quantity,
            movement_type=MovementType(self.movement_type),
            to_location=self.to_location.normalized(),
            to_status=CylinderStatus(self.to_status),
            from_location=self.from_location.normalized() if self.from_location is not None else None,
            from_status=CylinderStatus(self.from_status) if self.from_status is not None else None,
            reference_transaction_id=self.reference_transaction_id,
            moved_by=self.moved_by,
            notes=self.notes,
            idempotency_key=self.idempotency_key,
        )


@dataclass
class ValidationResult:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    # Populated when the source lacks stock
    available: Optional[int] = None
    shortfall: Optional[int] = None

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {"is_valid": self.is_valid, "errors": list(self.errors), "warnings": list(self.warnings)}


def skips_stock_check(movement: MovementRequest) -> bool:
    """ADJUSTMENT and a REFILLING source may create stock from nothing."""
    if movement.from_location is None:
        return True
    return (
        MovementType(movement.movement_type) == MovementType.ADJUSTMENT
        or movement.from_location.kind == LocationKind.REFILLING
    )


def _describe(location: Location) -> str:
    if location.reference_id is None:
        return location.kind.value
    return f"{location.kind.value}({location.reference_id})"


class MovementValidator:
    """Checks a MovementRequest against the transition table and current stock."""

    def __init__(self, store: LocationInventoryStore):
        self.store = store

    def check_transition(self, movement: MovementRequest) -> list[str]:
        """Table rule only (rule 2); no stock lookups."""
        rule = TRANSITION_TABLE.get(movement.movement_type)
        if rule is None:
            return []

        name = movement.movement_type.value
        errors = []
        if movement.from_location is None or movement.from_status is None:
            errors.append(f"{name} requires a source location and status")
            if movement.to_status != rule.to_status:
                errors.append(f"{name} destination status must be {rule.to_status.value}")
            if rule.to_kinds is not None and movement.to_location.kind not in rule.to_kinds:
                errors.append(f"{name} destination must be {' or '.join(sorted(k.value for k in rule.to_kinds))}")
            return errors

        if movement.from_status != rule.from_status or movement.to_status != rule.to_status:
            errors.append(f"{name} requires {rule.from_status.value}->{rule.to_status.value} status")
        if rule.from_kinds is not None and movement.from_location.kind not in rule.from_kinds:
            errors.append(f"{name} source must be {' or '.join(sorted(k.value for k in rule.from_kinds))}")
        if rule.to_kinds is not None and movement.to_location.kind not in rule.to_kinds:
            errors.append(f"{name} destination must be {' or '.join(sorted(k.value for k in rule.to_kinds))}")
        return errors

    def validate(self, movement: MovementRequest) -> ValidationResult:
        """
        Run every rule and collect all errors and warnings.

        Args:
            movement: the requested movement (locations are normalized here)

        Returns:
            ValidationResult: is_valid is True only when errors is empty
        """
        movement = movement.normalized()
        result = ValidationResult()

        if isinstance(movement.quantity, bool) or not isinstance(movement.quantity, int) or movement.quantity <= 0:
            result.errors.append("Movement quantity must be greater than 0")

        if movement.to_location.kind == LocationKind.CUSTOMER and movement.to_status == CylinderStatus.EMPTY:
            result.errors.append("Empty cylinders cannot be stored with customers; move them to YARD or PLANT")

        result.errors.extend(self.check_transition(movement))

        has_source = movement.from_location is not None and movement.from_status is not None
        if has_source:
            if (
                movement.from_location == movement.to_location
                and movement.from_status == movement.to_status
            ):
                result.errors.append("Cannot move cylinders to the same location with the same status")

            if not skips_stock_check(movement) and isinstance(movement.quantity, int) and movement.quantity > 0:
                available = self.store.get(movement.cylinder_type_id, movement.from_location, movement.from_status)
                if available < movement.quantity:
                    result.available = available
                    result.shortfall = movement.quantity - available
                    result.errors.append(
                        f"Insufficient {movement.from_status.value} cylinders at {_describe(movement.from_location)}: "
                        f"available {available}, requested {movement.quantity}, short by {result.shortfall}"
                    )

            if movement.movement_type == MovementType.RETURN_EMPTY and movement.from_location.kind == LocationKind.VEHICLE:
                result.warnings.append("Returning empties from a vehicle; confirm they were collected from a customer")

        if movement.movement_type == MovementType.DELIVERY_FILLED and movement.to_location.kind == LocationKind.VEHICLE:
            result.warnings.append("Delivering filled cylinders to a vehicle rather than a customer")

        return result
