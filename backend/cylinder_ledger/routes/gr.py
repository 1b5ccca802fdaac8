# backend/cylinder_ledger/routes/gr.py
"""
Goods receipt (GR) API routes, plus operator access to the inventory outbox.
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import (
    json_body,
    ledger_error_response,
    ledger_services,
    require_actor,
    unexpected_error_response,
)
from ..validation import LedgerError, parse_int


gr_bp = Blueprint("gr", __name__, url_prefix="/api/gr")


@gr_bp.route("", methods=["POST"])
@require_actor
def create_gr():
    """
    Create the GR for a delivery transaction.

    Request body:
    {
        "delivery_transaction_id": int,
        "advance_amount_cents": int (optional, >= 0)
    }

    Returns:
        201: GR created (PENDING)
        400: Invalid request
        404: Delivery not found
        409: GR already exists for the delivery
    """
    try:
        data = json_body()
        services = ledger_services()
        gr = services.gr.create(
            data.get("delivery_transaction_id"),
            g.actor_id,
            data.get("advance_amount_cents", 0),
        )
        return jsonify(services.gr.describe(gr)), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@gr_bp.route("", methods=["GET"])
@require_actor
def list_grs():
    """List GRs, newest first. Query params: status."""
    try:
        grs = ledger_services().gr.list_grs(request.args.get("status"))
        return jsonify({"items": [gr.to_dict() for gr in grs]}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@gr_bp.route("/approved", methods=["GET"])
@require_actor
def list_approved_grs():
    try:
        grs = ledger_services().gr.list_approved()
        return jsonify({"items": [gr.to_dict() for gr in grs]}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@gr_bp.route("/<int:gr_id>", methods=["GET"])
@require_actor
def get_gr(gr_id: int):
    try:
        services = ledger_services()
        return jsonify(services.gr.describe(services.gr.get(gr_id))), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@gr_bp.route("/preview/<int:delivery_id>", methods=["GET"])
@require_actor
def preview_gr(delivery_id: int):
    """Delivery lines and net quantities before a GR is created."""
    try:
        return jsonify(ledger_services().gr.preview(delivery_id)), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@gr_bp.route("/exists/<int:delivery_id>", methods=["GET"])
@require_actor
def gr_exists(delivery_id: int):
    try:
        return jsonify({"delivery_transaction_id": delivery_id, "exists": ledger_services().gr.exists(delivery_id)}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@gr_bp.route("/<int:gr_id>/approve", methods=["POST"])
@require_actor
def approve_gr(gr_id: int):
    """
    Approve a PENDING GR.

    Request body (optional):
    {
        "advance_amount_cents": int
    }

    Returns:
        200: GR approved; outbox_tasks shows the state of the inventory side effects
        404: GR not found
        409: GR is not PENDING
    """
    try:
        data = json_body()
        services = ledger_services()
        gr = services.gr.approve(gr_id, g.actor_id, data.get("advance_amount_cents"))
        return jsonify(services.gr.describe(gr)), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@gr_bp.route("/<int:gr_id>/finalize", methods=["POST"])
@require_actor
def finalize_gr(gr_id: int):
    """
    Finalize an APPROVED GR.

    Returns:
        200: GR finalized
        404: GR not found
        409: GR is not APPROVED
    """
    try:
        services = ledger_services()
        gr = services.gr.finalize(gr_id, g.actor_id)
        return jsonify(services.gr.describe(gr)), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@gr_bp.route("/<int:gr_id>/close-trip", methods=["POST"])
@require_actor
def close_trip(gr_id: int):
    """Finalize if APPROVED, no-op if FINALIZED, 409 if PENDING."""
    try:
        services = ledger_services()
        gr = services.gr.close_trip(gr_id, g.actor_id)
        return jsonify(services.gr.describe(gr)), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@gr_bp.route("/outbox", methods=["GET"])
@require_actor
def list_outbox_tasks():
    """Inventory side-effect tasks. Query params: status, goods_receipt_id."""
    try:
        goods_receipt_id = parse_int(request.args.get("goods_receipt_id"), "goods_receipt_id", minimum=1, required=False)
        tasks = ledger_services().outbox.list_tasks(request.args.get("status"), goods_receipt_id)
        return jsonify({"items": [task.to_dict() for task in tasks]}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@gr_bp.route("/outbox/process", methods=["POST"])
@require_actor
def process_outbox():
    try:
        limit = parse_int(json_body().get("limit", 100), "limit", minimum=1)
        return jsonify(ledger_services().outbox.process_due_tasks(limit=limit)), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)


@gr_bp.route("/outbox/<int:task_id>/retry", methods=["POST"])
@require_actor
def retry_outbox_task(task_id: int):
    """Re-arm a FAILED or ALERT task and attempt it immediately."""
    try:
        task = ledger_services().outbox.retry_task(task_id)
        return jsonify(task.to_dict()), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception as e:
        return unexpected_error_response(e)
