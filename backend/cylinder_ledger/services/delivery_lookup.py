# Overview: Read access to delivery transactions owned by the Delivery domain.

from __future__ import annotations

from dataclasses import dataclass

from ..models import DeliveryTransaction
from ..validation import NotFoundError


@dataclass(frozen=True)
class DeliveryLineTotals:
    cylinder_type_id: int
    delivered_qty: int
    returned_qty: int

    @property
    def net_qty(self) -> int:
        return self.delivered_qty - self.returned_qty


class DeliveryLookup:
    def __init__(self, session):
        self.session = session

    def get(self, delivery_id: int) -> DeliveryTransaction:
        delivery = self.session.get(DeliveryTransaction, delivery_id)
        if delivery is None:
            raise NotFoundError(f"Delivery transaction {delivery_id} not found")
        return delivery

    def line_totals(self, delivery: DeliveryTransaction) -> list[DeliveryLineTotals]:
        """Delivery lines summed per cylinder type, in first-seen order."""
        totals: dict[int, list[int]] = {}
        for line in delivery.lines:
            entry = totals.setdefault(line.cylinder_type_id, [0, 0])
            entry[0] += int(line.delivered_qty or 0)
            entry[1] += int(line.returned_qty or 0)
        return [
            DeliveryLineTotals(cylinder_type_id=type_id, delivered_qty=delivered, returned_qty=returned)
            for type_id, (delivered, returned) in totals.items()
        ]
