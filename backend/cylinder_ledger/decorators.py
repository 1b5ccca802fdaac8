# Overview: Request decorators and shared helpers for API routes.

import logging
from functools import wraps

from flask import current_app, g, jsonify, request

from .extensions import db
from .services.wiring import build_services
from .validation import (
    ConflictError,
    InsufficientQuantityError,
    LedgerError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

ACTOR_HEADER = "X-User-Id"


def require_actor(f):
    """
    Require the acting user id set by the upstream auth gateway.

    Sets g.actor_id (int). Returns 401 when the header is missing or not a
    positive integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = (request.headers.get(ACTOR_HEADER) or "").strip()
        if not raw:
            return jsonify({"error": "Authentication required"}), 401
        if not raw.isdigit() or int(raw) <= 0:
            return jsonify({"error": f"Invalid {ACTOR_HEADER} header"}), 401

        g.actor_id = int(raw)
        return f(*args, **kwargs)

    return decorated_function


def ledger_services():
    """Service graph bound to the request's db.session."""
    return build_services(db.session, current_app.config)


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def ledger_error_response(exc: LedgerError):
    """Roll back and map a ledger error to its HTTP status."""
    db.session.rollback()
    body = {"error": str(exc)}
    if isinstance(exc, InsufficientQuantityError):
        body.update(
            {
                "errors": exc.errors,
                "available": exc.available,
                "requested": exc.requested,
                "shortfall": exc.shortfall,
            }
        )
        return jsonify(body), 400
    if isinstance(exc, ValidationError):
        body["errors"] = exc.errors
        return jsonify(body), 400
    if isinstance(exc, NotFoundError):
        return jsonify(body), 404
    if isinstance(exc, ConflictError):
        return jsonify(body), 409
    logger.error("Ledger failure: %s", exc)
    return jsonify({"error": "Internal server error"}), 500


def unexpected_error_response(exc: Exception):
    """Log the full traceback; the client only sees a generic message."""
    db.session.rollback()
    logger.exception("Unexpected error handling %s %s: %s", request.method, request.path, exc)
    return jsonify({"error": "Internal server error"}), 500
