# backend/cylinder_ledger/routes/inventory.py
"""
Cylinder inventory routes.

SECURITY: All routes require the X-User-Id header (set by the auth gateway).

Time semantics:
- since/until accept ISO-8601 with Z/offsets; normalized to UTC-naive internally.
- Both bounds are inclusive.
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import (
    json_body,
    ledger_error_response,
    ledger_services,
    require_actor,
    unexpected_error_response,
)
from ..services.movement_service import DEFAULT_MOVEMENT_LOG_LIMIT, parse_movement_request
from ..time_utils import parse_iso_datetime
from ..validation import LedgerError, ValidationError, parse_int


cylinder_inventory_bp = Blueprint("cylinder_inventory", __name__, url_prefix="/api/cylinder-inventory")


def _parse_time(name: str):
    raw = request.args.get(name)
    try:
        return parse_iso_datetime(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 datetime")


@cylinder_inventory_bp.get("/summary")
@require_actor
def inventory_summary():
    """Quantities per cylinder type across all locations."""
    try:
        return jsonify({"items": ledger_services().movements.get_inventory_summary()}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@cylinder_inventory_bp.get("/locations/summary")
@require_actor
def location_summary():
    """Quantities per location across all cylinder types."""
    try:
        return jsonify({"items": ledger_services().movements.get_location_summary()}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@cylinder_inventory_bp.get("/locations/<string:kind>")
@require_actor
def inventory_by_location(kind: str):
    """
    Positions at one location.

    Query params: reference_id (VEHICLE/CUSTOMER), status (FILLED/EMPTY)
    """
    try:
        reference_id = parse_int(request.args.get("reference_id"), "reference_id", minimum=1, required=False)
        items = ledger_services().movements.get_inventory_by_location(
            kind, reference_id, request.args.get("status")
        )
        return jsonify({"items": items}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@cylinder_inventory_bp.get("/available")
@require_actor
def available_quantity():
    """Quantity of one position; 0 when it does not exist."""
    try:
        cylinder_type_id = parse_int(request.args.get("cylinder_type_id"), "cylinder_type_id", minimum=1)
        reference_id = parse_int(request.args.get("reference_id"), "reference_id", minimum=1, required=False)
        kind = request.args.get("kind")
        status = request.args.get("status") or "FILLED"
        quantity = ledger_services().movements.get_available_quantity(cylinder_type_id, kind, reference_id, status)
        return jsonify(
            {
                "cylinder_type_id": cylinder_type_id,
                "kind": kind.upper() if kind else kind,
                "reference_id": reference_id,
                "status": status.upper(),
                "quantity": quantity,
            }
        ), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@cylinder_inventory_bp.post("/movements")
@require_actor
def record_movement():
    """
    Record a movement.

    Request body:
    {
        "cylinder_type_id": int,
        "quantity": int,
        "movement_type": str,
        "from_location": {"kind": str, "reference_id": int?, "status": str?} (optional),
        "to_location": {"kind": str, "reference_id": int?, "status": str?},
        "reference_transaction_id": int (optional),
        "notes": str (optional)
    }

    Returns:
        201: Movement recorded
        400: Invalid movement or insufficient stock
        404: Unknown cylinder type
    """
    try:
        services = ledger_services()
        movement = parse_movement_request(json_body(), g.actor_id)
        record = services.movements.record_movement(movement)
        return jsonify(services.movements.movement_dict(record)), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@cylinder_inventory_bp.post("/movements/validate")
@require_actor
def validate_movement():
    """Dry-run validation; never writes."""
    try:
        movement = parse_movement_request(json_body(), g.actor_id)
        if movement.to_status is None:
            raise ValidationError("to_location.status is required for validation")
        result = ledger_services().movements.validate_movement(movement)
        return jsonify(result.to_dict()), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@cylinder_inventory_bp.post("/movements/delivery")
@require_actor
def record_delivery_movement():
    """Load filled cylinders YARD -> VEHICLE for a delivery."""
    try:
        data = json_body()
        services = ledger_services()
        record = services.movements.record_delivery_movement(
            delivery_id=parse_int(data.get("delivery_id"), "delivery_id", minimum=1),
            cylinder_type_id=parse_int(data.get("cylinder_type_id"), "cylinder_type_id", minimum=1),
            quantity=parse_int(data.get("quantity"), "quantity"),
            vehicle_id=parse_int(data.get("vehicle_id"), "vehicle_id", minimum=1),
            actor=g.actor_id,
        )
        return jsonify(services.movements.movement_dict(record)), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@cylinder_inventory_bp.post("/movements/gr-approval")
@require_actor
def record_gr_approval_movement():
    """Hand over filled cylinders VEHICLE -> CUSTOMER."""
    try:
        data = json_body()
        services = ledger_services()
        record = services.movements.record_gr_approval_movement(
            delivery_id=parse_int(data.get("delivery_id"), "delivery_id", minimum=1),
            cylinder_type_id=parse_int(data.get("cylinder_type_id"), "cylinder_type_id", minimum=1),
            quantity=parse_int(data.get("quantity"), "quantity"),
            actor=g.actor_id,
            vehicle_id=parse_int(data.get("vehicle_id"), "vehicle_id", minimum=1, required=False),
            customer_id=parse_int(data.get("customer_id"), "customer_id", minimum=1, required=False),
        )
        return jsonify(services.movements.movement_dict(record)), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@cylinder_inventory_bp.post("/movements/return")
@require_actor
def record_return_movement():
    """Close out one delivery line: returns to the vehicle, the rest back to the yard."""
    try:
        data = json_body()
        services = ledger_services()
        records = services.movements.record_return_movement(
            delivery_id=parse_int(data.get("delivery_id"), "delivery_id", minimum=1),
            cylinder_type_id=parse_int(data.get("cylinder_type_id"), "cylinder_type_id", minimum=1),
            delivered_qty=data.get("delivered_qty"),
            returned_qty=data.get("returned_qty", 0),
            actor=g.actor_id,
            vehicle_id=parse_int(data.get("vehicle_id"), "vehicle_id", minimum=1, required=False),
            customer_id=parse_int(data.get("customer_id"), "customer_id", minimum=1, required=False),
        )
        return jsonify({"items": [services.movements.movement_dict(r) for r in records]}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@cylinder_inventory_bp.get("/movements")
@require_actor
def movement_logs():
    """
    Movement log, newest first.

    Query params: limit (1..MOVEMENT_LOG_MAX_LIMIT), offset, and optional
    filters cylinder_type_id, reference_transaction_id, movement_type, since, until.
    """
    try:
        services = ledger_services()
        limit = request.args.get("limit", DEFAULT_MOVEMENT_LOG_LIMIT)
        offset = request.args.get("offset", 0)
        filters = ("cylinder_type_id", "reference_transaction_id", "movement_type", "since", "until")
        if any(request.args.get(name) for name in filters):
            records = services.movements.query_movements(
                cylinder_type_id=request.args.get("cylinder_type_id"),
                reference_transaction_id=request.args.get("reference_transaction_id"),
                movement_type=request.args.get("movement_type"),
                since=_parse_time("since"),
                until=_parse_time("until"),
                limit=limit,
                offset=offset,
            )
        else:
            records = services.movements.get_movement_logs(limit, offset)
        return jsonify({"items": [services.movements.movement_dict(r) for r in records]}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@cylinder_inventory_bp.get("/movements/cylinder-type/<int:cylinder_type_id>")
@require_actor
def movements_by_cylinder_type(cylinder_type_id: int):
    try:
        services = ledger_services()
        records = services.movements.get_movements_by_cylinder_type(cylinder_type_id)
        return jsonify({"items": [services.movements.movement_dict(r) for r in records]}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@cylinder_inventory_bp.get("/movements/transaction/<int:transaction_id>")
@require_actor
def movements_by_transaction(transaction_id: int):
    try:
        services = ledger_services()
        records = services.movements.get_movements_by_transaction(transaction_id)
        return jsonify({"items": [services.movements.movement_dict(r) for r in records]}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@cylinder_inventory_bp.post("/initialize")
@require_actor
def initialize_inventory():
    """
    Seed filled stock into the YARD.

    Request body:
    {
        "items": [{"cylinder_type_id": int, "quantity": int}, ...]
    }
    """
    try:
        services = ledger_services()
        items = json_body().get("items")
        if not isinstance(items, list):
            raise ValidationError("items must be a list")
        records = services.movements.initialize_inventory(items, g.actor_id)
        return jsonify({"items": [services.movements.movement_dict(r) for r in records]}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@cylinder_inventory_bp.post("/initialize/location")
@require_actor
def initialize_location():
    """
    Seed stock at any location.

    Request body:
    {
        "location_kind": str,
        "reference_id": int (VEHICLE/CUSTOMER),
        "items": [{"cylinder_type_id": int, "quantity": int, "status": str?}, ...]
    }
    """
    try:
        data = json_body()
        services = ledger_services()
        items = data.get("items")
        if not isinstance(items, list):
            raise ValidationError("items must be a list")
        records = services.movements.initialize_location(
            data.get("location_kind"),
            parse_int(data.get("reference_id"), "reference_id", minimum=1, required=False),
            items,
            g.actor_id,
        )
        return jsonify({"items": [services.movements.movement_dict(r) for r in records]}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)
