# backend/cylinder_ledger/routes/exchange.py
"""
Cylinder exchange tracking and daily reconciliation routes.
"""
from datetime import date

from flask import Blueprint, g, jsonify, request

from ..decorators import (
    json_body,
    ledger_error_response,
    ledger_services,
    require_actor,
    unexpected_error_response,
)
from ..time_utils import parse_iso_datetime
from ..validation import LedgerError, ValidationError


cylinder_exchange_bp = Blueprint("cylinder_exchange", __name__, url_prefix="/api/cylinder-exchange")


def _parse_date(value, field: str):
    if value in (None, ""):
        return None
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"{field} must be a YYYY-MM-DD date")


def _parse_datetime(value, field: str):
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


@cylinder_exchange_bp.post("/exchanges")
@require_actor
def record_exchange():
    """
    Record the exchange of one delivery order.

    Request body:
    {
        "order_id": int,
        "filled_delivered": int,
        "empty_collected": int,
        "expected_empty": int,
        "plan_id": int?, "customer_id": int?, "cylinder_type_id": int?,
        "delivery_transaction_id": int?, "damaged_qty": int?,
        "variance_reason": str?, "notes": str?, "customer_acknowledged": bool?
    }
    """
    try:
        data = json_body()
        record = ledger_services().reconciliation.record_exchange(
            order_id=data.get("order_id"),
            filled_delivered=data.get("filled_delivered"),
            empty_collected=data.get("empty_collected"),
            expected_empty=data.get("expected_empty"),
            plan_id=data.get("plan_id"),
            customer_id=data.get("customer_id"),
            cylinder_type_id=data.get("cylinder_type_id"),
            delivery_transaction_id=data.get("delivery_transaction_id"),
            damaged_qty=data.get("damaged_qty", 0),
            variance_reason=data.get("variance_reason"),
            notes=data.get("notes"),
            customer_acknowledged=bool(data.get("customer_acknowledged", False)),
            actor=g.actor_id,
        )
        return jsonify(record.to_dict()), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@cylinder_exchange_bp.get("/exchanges")
@require_actor
def list_exchanges():
    """Query params: plan_id, order_id, variance_type, customer_id, date_from, date_to."""
    try:
        records = ledger_services().reconciliation.list_exchanges(
            plan_id=request.args.get("plan_id"),
            order_id=request.args.get("order_id"),
            variance_type=request.args.get("variance_type"),
            customer_id=request.args.get("customer_id"),
            date_from=_parse_datetime(request.args.get("date_from"), "date_from"),
            date_to=_parse_datetime(request.args.get("date_to"), "date_to"),
        )
        return jsonify({"items": [record.to_dict() for record in records]}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@cylinder_exchange_bp.get("/exchanges/<int:exchange_id>")
@require_actor
def get_exchange(exchange_id: int):
    try:
        return jsonify(ledger_services().reconciliation.get_exchange(exchange_id).to_dict()), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@cylinder_exchange_bp.post("/exchanges/<int:exchange_id>/acknowledge")
@require_actor
def acknowledge_exchange(exchange_id: int):
    try:
        record = ledger_services().reconciliation.acknowledge_exchange(exchange_id, g.actor_id)
        return jsonify(record.to_dict()), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@cylinder_exchange_bp.get("/summary/<int:plan_id>")
@require_actor
def exchange_summary(plan_id: int):
    try:
        return jsonify(ledger_services().reconciliation.get_exchange_summary(plan_id)), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@cylinder_exchange_bp.get("/variance-summary/<int:plan_id>")
@require_actor
def exchange_variance_summary(plan_id: int):
    try:
        items = ledger_services().reconciliation.get_exchange_variance_summary(plan_id)
        return jsonify({"plan_id": plan_id, "items": items}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@cylinder_exchange_bp.post("/reconciliations")
@require_actor
def create_reconciliation():
    """
    Create the daily reconciliation of a plan.

    Request body:
    {
        "plan_id": int,
        "reconciliation_notes": str?,
        "reconciliation_date": "YYYY-MM-DD"?
    }
    """
    try:
        data = json_body()
        services = ledger_services()
        reconciliation = services.reconciliation.create_daily_reconciliation(
            data.get("plan_id"),
            g.actor_id,
            notes=data.get("reconciliation_notes"),
            reconciliation_date=_parse_date(data.get("reconciliation_date"), "reconciliation_date"),
        )
        return jsonify(services.reconciliation.describe_reconciliation(reconciliation)), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@cylinder_exchange_bp.get("/reconciliations")
@require_actor
def list_reconciliations():
    """Query params: plan_id, status, reconciled_by, date_from, date_to."""
    try:
        reconciliations = ledger_services().reconciliation.list_reconciliations(
            plan_id=request.args.get("plan_id"),
            status=request.args.get("status"),
            reconciled_by=request.args.get("reconciled_by"),
            date_from=_parse_date(request.args.get("date_from"), "date_from"),
            date_to=_parse_date(request.args.get("date_to"), "date_to"),
        )
        return jsonify({"items": [r.to_dict() for r in reconciliations]}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@cylinder_exchange_bp.get("/reconciliations/<int:reconciliation_id>")
@require_actor
def get_reconciliation(reconciliation_id: int):
    try:
        services = ledger_services()
        reconciliation = services.reconciliation.get_reconciliation(reconciliation_id)
        return jsonify(services.reconciliation.describe_reconciliation(reconciliation)), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@cylinder_exchange_bp.post("/reconciliations/<int:reconciliation_id>/approve")
@require_actor
def approve_reconciliation(reconciliation_id: int):
    """COMPLETED -> APPROVED; 409 from any other status."""
    try:
        reconciliation = ledger_services().reconciliation.approve_reconciliation(reconciliation_id, g.actor_id)
        return jsonify(reconciliation.to_dict()), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@cylinder_exchange_bp.patch("/reconciliations/<int:reconciliation_id>/status")
@require_actor
def update_reconciliation_status(reconciliation_id: int):
    """
    Advance a reconciliation one step.

    Request body:
    {
        "status": "IN_PROGRESS" | "COMPLETED" | "APPROVED"
    }
    """
    try:
        reconciliation = ledger_services().reconciliation.update_reconciliation_status(
            reconciliation_id, json_body().get("status"), g.actor_id
        )
        return jsonify(reconciliation.to_dict()), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@cylinder_exchange_bp.patch("/variance-details/<int:detail_id>")
@require_actor
def update_variance_resolution(detail_id: int):
    """
    Request body:
    {
        "resolution_status": "PENDING" | "RESOLVED" | "ESCALATED",
        "resolution_notes": str?
    }
    """
    try:
        data = json_body()
        detail = ledger_services().reconciliation.update_variance_resolution(
            detail_id, data.get("resolution_status"), data.get("resolution_notes")
        )
        return jsonify(detail.to_dict()), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@cylinder_exchange_bp.post("/vehicle-inventory")
@require_actor
def count_vehicle_inventory():
    """
    Record the end-of-day count of a plan's vehicle.

    Request body:
    {
        "plan_id": int,
        "items": [{"cylinder_type_id": int, "actual_remaining": int, "variance_reason": str?}, ...]
    }
    """
    try:
        data = json_body()
        items = data.get("items")
        if not isinstance(items, list):
            raise ValidationError("items must be a list")
        rows = ledger_services().reconciliation.count_vehicle_inventory(data.get("plan_id"), items, g.actor_id)
        return jsonify({"items": [row.to_dict() for row in rows]}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@cylinder_exchange_bp.get("/vehicle-inventory/<int:plan_id>")
@require_actor
def vehicle_inventory(plan_id: int):
    try:
        rows = ledger_services().reconciliation.get_vehicle_inventory(plan_id)
        return jsonify({"plan_id": plan_id, "items": [row.to_dict() for row in rows]}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)
