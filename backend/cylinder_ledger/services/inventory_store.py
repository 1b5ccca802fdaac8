# Overview: Durable (cylinder type, location, status) -> quantity map with atomic adjusts.

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..enums import CylinderStatus, LocationKind, SINGLETON_LOCATION_KINDS
from ..models import InventoryPosition, position_key
from ..time_utils import utcnow
from ..validation import InsufficientQuantityError, ValidationError
from .concurrency import lock_for_update

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Location:
    """A physical holding point. YARD, PLANT and REFILLING exist once and carry no reference id."""

    kind: LocationKind
    reference_id: Optional[int] = None

    def normalized(self) -> "Location":
        kind = LocationKind(self.kind)
        if kind in SINGLETON_LOCATION_KINDS:
            return Location(kind, None)
        return Location(kind, self.reference_id)

    def to_dict(self) -> dict:
        return {"kind": LocationKind(self.kind).value, "reference_id": self.reference_id}


class LocationInventoryStore:
    """
    Quantity per (cylinder type, location, status).

    Positions are created implicitly on the first positive adjust and are
    pinned at zero (never deleted) once emptied. Quantities never go negative.
    Callers own the transaction: adjust() flushes, it never commits.
    """

    def __init__(self, session):
        self.session = session

    def _find(self, cylinder_type_id: int, location: Location, status: CylinderStatus, *, lock: bool = False):
        key = position_key(cylinder_type_id, location.kind.value, location.reference_id, CylinderStatus(status).value)
        query = self.session.query(InventoryPosition).filter_by(position_key=key)
        if lock:
            query = lock_for_update(query)
        return query.first()

    def get(self, cylinder_type_id: int, location: Location, status: CylinderStatus) -> int:
        """Current quantity; 0 for a position that does not exist yet."""
        position = self._find(cylinder_type_id, location.normalized(), status)
        return position.quantity if position is not None else 0

    def adjust(
        self,
        cylinder_type_id: int,
        location: Location,
        status: CylinderStatus,
        delta: int,
        actor: int | None = None,
    ) -> int:
        """
        Apply a signed delta to one position and return the new quantity.

        Raises:
            InsufficientQuantityError: the result would be negative
        """
        if isinstance(delta, bool) or not isinstance(delta, int):
            raise ValidationError("delta must be an integer")

        location = location.normalized()
        status = CylinderStatus(status)
        position = self._find(cylinder_type_id, location, status, lock=True)
        available = position.quantity if position is not None else 0

        if delta == 0:
            return available

        new_quantity = available + delta
        if new_quantity < 0:
            raise InsufficientQuantityError(
                f"Insufficient {status.value} stock of cylinder type {cylinder_type_id} at "
                f"{location.kind.value}{'' if location.reference_id is None else f'({location.reference_id})'}: "
                f"available {available}, requested {-delta}, short by {-new_quantity}",
                available=available,
                requested=-delta,
            )

        now = utcnow()
        if position is None:
            position = InventoryPosition(
                position_key=position_key(cylinder_type_id, location.kind.value, location.reference_id, status.value),
                cylinder_type_id=cylinder_type_id,
                location_kind=location.kind.value,
                location_reference_id=location.reference_id,
                cylinder_status=status.value,
                quantity=new_quantity,
                last_updated_at=now,
                last_updated_by=actor,
            )
            self.session.add(position)
        else:
            position.quantity = new_quantity
            position.last_updated_at = now
            position.last_updated_by = actor

        self.session.flush()
        logger.debug("Position %s adjusted by %d to %d", position.position_key, delta, new_quantity)
        return new_quantity

    def query(
        self,
        *,
        cylinder_type_id: int | None = None,
        location_kind: LocationKind | None = None,
        location_reference_id: int | None = None,
        status: CylinderStatus | None = None,
        include_zero: bool = False,
    ) -> list[InventoryPosition]:
        """Positions matching any subset of the filters, zero rows omitted unless asked for."""
        query = self.session.query(InventoryPosition)
        if cylinder_type_id is not None:
            query = query.filter(InventoryPosition.cylinder_type_id == cylinder_type_id)
        if location_kind is not None:
            kind = LocationKind(location_kind)
            query = query.filter(InventoryPosition.location_kind == kind.value)
            if location_reference_id is not None and kind not in SINGLETON_LOCATION_KINDS:
                query = query.filter(InventoryPosition.location_reference_id == location_reference_id)
        elif location_reference_id is not None:
            query = query.filter(InventoryPosition.location_reference_id == location_reference_id)
        if status is not None:
            query = query.filter(InventoryPosition.cylinder_status == CylinderStatus(status).value)
        if not include_zero:
            query = query.filter(InventoryPosition.quantity > 0)
        return query.order_by(
            InventoryPosition.cylinder_type_id,
            InventoryPosition.location_kind,
            InventoryPosition.location_reference_id,
            InventoryPosition.cylinder_status,
        ).all()
