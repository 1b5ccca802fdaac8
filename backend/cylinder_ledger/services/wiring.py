# Overview: Builds the service graph for one SQLAlchemy session.

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from .delivery_lookup import DeliveryLookup
from .gr_service import GRWorkflow
from .inventory_store import LocationInventoryStore
from .movement_ledger import MovementLedger
from .movement_service import CylinderMovementService
from .movement_validator import MovementValidator
from .outbox_service import InventoryOutbox
from .reconciliation_service import ReconciliationEngine
from .reference_service import ReferenceDirectory


@dataclass
class LedgerServices:
    store: LocationInventoryStore
    ledger: MovementLedger
    validator: MovementValidator
    references: ReferenceDirectory
    deliveries: DeliveryLookup
    movements: CylinderMovementService
    outbox: InventoryOutbox
    gr: GRWorkflow
    reconciliation: ReconciliationEngine


def build_services(session, config: Mapping[str, Any] | None = None) -> LedgerServices:
    """Wire every component against `session`; config is a Flask config or any mapping."""
    config = config or {}

    store = LocationInventoryStore(session)
    ledger = MovementLedger(session)
    validator = MovementValidator(store)
    references = ReferenceDirectory(session)
    deliveries = DeliveryLookup(session)
    movements = CylinderMovementService(
        session,
        store,
        ledger,
        validator,
        references,
        deliveries,
        max_log_limit=int(config.get("MOVEMENT_LOG_MAX_LIMIT", 1000)),
        large_initialization_threshold=int(config.get("LARGE_INITIALIZATION_THRESHOLD", 50)),
    )
    outbox = InventoryOutbox(
        session,
        movements,
        max_attempts=int(config.get("OUTBOX_MAX_ATTEMPTS", 5)),
        backoff_base_seconds=float(config.get("OUTBOX_BACKOFF_BASE_SECONDS", 2)),
        backoff_max_seconds=float(config.get("OUTBOX_BACKOFF_MAX_SECONDS", 300)),
    )
    gr = GRWorkflow(
        session,
        deliveries,
        outbox,
        dispatch_inline=bool(config.get("OUTBOX_DISPATCH_INLINE", True)),
    )
    reconciliation = ReconciliationEngine(session, references, deliveries)

    return LedgerServices(
        store=store,
        ledger=ledger,
        validator=validator,
        references=references,
        deliveries=deliveries,
        movements=movements,
        outbox=outbox,
        gr=gr,
        reconciliation=reconciliation,
    )
