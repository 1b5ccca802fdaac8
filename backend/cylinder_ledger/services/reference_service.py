# Overview: Read-only lookups against master data (cylinder types, customers, vehicles).

from __future__ import annotations

from ..enums import LocationKind
from ..models import Customer, CylinderType, Vehicle
from ..validation import NotFoundError


class ReferenceDirectory:
    """
    Names and unit values for ledger readability and variance valuation.

    Name lookups are cached per instance and never fail: a missing reference
    simply has no name. require_cylinder_type() is the one strict lookup.
    """

    def __init__(self, session):
        self.session = session
        self._types: dict[int, CylinderType | None] = {}
        self._names: dict[tuple[str, int], str | None] = {}

    def cylinder_type(self, cylinder_type_id: int) -> CylinderType | None:
        if cylinder_type_id not in self._types:
            self._types[cylinder_type_id] = self.session.get(CylinderType, cylinder_type_id)
        return self._types[cylinder_type_id]

    def require_cylinder_type(self, cylinder_type_id: int) -> CylinderType:
        cylinder_type = self.cylinder_type(cylinder_type_id)
        if cylinder_type is None:
            raise NotFoundError(f"Cylinder type {cylinder_type_id} not found")
        return cylinder_type

    def unit_value_cents(self, cylinder_type_id: int | None) -> int:
        if cylinder_type_id is None:
            return 0
        cylinder_type = self.cylinder_type(cylinder_type_id)
        return int(cylinder_type.unit_value_cents or 0) if cylinder_type is not None else 0

    def location_name(self, kind: str, reference_id: int | None) -> str | None:
        if reference_id is None:
            return None
        kind = LocationKind(kind)
        cache_key = (kind.value, reference_id)
        if cache_key in self._names:
            return self._names[cache_key]

        name = None
        if kind == LocationKind.CUSTOMER:
            customer = self.session.get(Customer, reference_id)
            name = customer.name if customer else None
        elif kind == LocationKind.VEHICLE:
            vehicle = self.session.get(Vehicle, reference_id)
            name = vehicle.vehicle_number if vehicle else None
        self._names[cache_key] = name
        return name
