# Overview: Closed value sets for locations, statuses, movements and document lifecycles.

from __future__ import annotations

from enum import Enum


class LocationKind(str, Enum):
    """Category of physical holding point for cylinders."""

    YARD = "YARD"
    VEHICLE = "VEHICLE"
    CUSTOMER = "CUSTOMER"
    PLANT = "PLANT"
    REFILLING = "REFILLING"


# Locations that exist once; their reference id is ignored on reads and writes.
SINGLETON_LOCATION_KINDS = frozenset({LocationKind.YARD, LocationKind.PLANT, LocationKind.REFILLING})


class CylinderStatus(str, Enum):
    FILLED = "FILLED"
    EMPTY = "EMPTY"


class MovementType(str, Enum):
    # Status-aware types, constrained by the transition table
    DELIVERY_FILLED = "DELIVERY_FILLED"
    RETURN_EMPTY = "RETURN_EMPTY"
    REFILLING_OUT = "REFILLING_OUT"
    RETURN_FILLED = "RETURN_FILLED"
    DELIVERY_EMPTY = "DELIVERY_EMPTY"
    REFILLING_IN = "REFILLING_IN"
    ADJUSTMENT = "ADJUSTMENT"
    TRANSFER = "TRANSFER"
    # Coarse types used by delivery/GR flows
    DELIVERY = "DELIVERY"
    RETURN = "RETURN"
    REFILLING = "REFILLING"


class GRStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    FINALIZED = "FINALIZED"


class ExchangeVarianceType(str, Enum):
    MATCH = "MATCH"
    SHORTAGE = "SHORTAGE"
    EXCESS = "EXCESS"


class VarianceDetailType(str, Enum):
    SHORTAGE = "SHORTAGE"
    EXCESS = "EXCESS"
    DAMAGE = "DAMAGE"


class VarianceReason(str, Enum):
    STOCK_SHORTAGE = "STOCK_SHORTAGE"
    CUSTOMER_REJECTED = "CUSTOMER_REJECTED"
    DAMAGE = "DAMAGE"
    WRONG_TYPE = "WRONG_TYPE"
    CUSTOMER_NOT_AVAILABLE = "CUSTOMER_NOT_AVAILABLE"
    PARTIAL_DELIVERY = "PARTIAL_DELIVERY"
    OTHER = "OTHER"


class ResolutionStatus(str, Enum):
    PENDING = "PENDING"
    RESOLVED = "RESOLVED"
    ESCALATED = "ESCALATED"


class ReconciliationStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    APPROVED = "APPROVED"


# Each status may only advance to the next one.
RECONCILIATION_NEXT_STATUS = {
    ReconciliationStatus.PENDING: ReconciliationStatus.IN_PROGRESS,
    ReconciliationStatus.IN_PROGRESS: ReconciliationStatus.COMPLETED,
    ReconciliationStatus.COMPLETED: ReconciliationStatus.APPROVED,
}


class OutboxTaskType(str, Enum):
    GR_APPROVAL = "GR_APPROVAL"
    GR_FINALIZE = "GR_FINALIZE"


class OutboxStatus(str, Enum):
    PENDING = "PENDING"
    DONE = "DONE"
    FAILED = "FAILED"
    # Dead-lettered: retries exhausted, operator attention required
    ALERT = "ALERT"
