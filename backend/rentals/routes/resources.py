# Overview: Flask API routes for customers, items, costs and reservations; every mutation passes the approval gate.

"""
Business Record API Routes

WHY: One set of handlers serves every record type so that all mutations
take the same path through the approval gate.

COLLECTIONS:
- /api/customers     -> customer
- /api/items         -> item (alias /api/products)
- /api/costs         -> cost
- /api/reservations  -> reservation

Payments have their own blueprint (see routes/payments.py).

RESPONSES:
- 200/201: change applied ({"status": "applied", "record": ...})
- 202: change stored as an approval request ({"status": "pending_approval", "approval": ...})
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..errors import RentalsError, ResourceNotFound
from ..extensions import db
from ..decorators import require_auth
from ..services import mutation_service, resource_service
from .common import error_response, mutation_response, parse_mutation_request, server_error


resources_bp = Blueprint("resources", __name__, url_prefix="/api")


COLLECTIONS = {
    "customers": "customer",
    "items": "item",
    "products": "item",
    "costs": "cost",
    "reservations": "reservation",
}

MAX_PAGE_SIZE = 200


def _resource_type(collection: str) -> str:
    resource_type = COLLECTIONS.get(collection)
    if resource_type is None:
        raise ResourceNotFound(f"Unknown collection '{collection}'")
    return resource_type


# =============================================================================
# QUERIES
# =============================================================================

@resources_bp.get("/<collection>")
@require_auth
def list_records_route(collection: str):
    """
    List records, newest first.

    Query params:
        limit: page size (default 50, max 200)
        offset: rows to skip
    """
    try:
        policy = resource_service.get_policy(_resource_type(collection))
        limit = min(max(request.args.get("limit", 50, type=int), 1), MAX_PAGE_SIZE)
        offset = max(request.args.get("offset", 0, type=int), 0)

        query = db.session.query(policy.model)
        total = query.count()
        rows = query.order_by(policy.model.id.desc()).offset(offset).limit(limit).all()

        return jsonify({
            collection: [row.to_dict() for row in rows],
            "total": total,
            "limit": limit,
            "offset": offset,
        }), 200
    except RentalsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list %s", collection)
        return server_error()


@resources_bp.get("/<collection>/<int:record_id>")
@require_auth
def get_record_route(collection: str, record_id: int):
    try:
        resource_type = _resource_type(collection)
        return jsonify(resource_service.snapshot(resource_type, record_id)), 200
    except RentalsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get %s %s", collection, record_id)
        return server_error()


# =============================================================================
# MUTATIONS (GATED)
# =============================================================================

@resources_bp.post("/<collection>")
@require_auth
def create_record_route(collection: str):
    """
    Create a record.

    Accepts JSON or multipart/form-data (see routes/common.py).

    Returns:
        201: Created
        202: Submitted for approval
        400: Invalid input
        404: Referenced record not found
        502: Upload failed
    """
    try:
        resource_type = _resource_type(collection)
        payload, files, reason = parse_mutation_request()
        outcome = mutation_service.perform_mutation(
            g.actor, "create", resource_type, payload=payload, files=files, reason=reason
        )
        return mutation_response(outcome, created=True)
    except RentalsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create %s", collection)
        return server_error()


@resources_bp.put("/<collection>/<int:record_id>")
@require_auth
def update_record_route(collection: str, record_id: int):
    """
    Update a record.

    Employees submit the full edited record; only the fields that differ are
    stored on the approval request. Sending "attachments" replaces the kept
    attachment list; omitting it leaves attachments alone.
    """
    try:
        resource_type = _resource_type(collection)
        payload, files, reason = parse_mutation_request()
        outcome = mutation_service.perform_mutation(
            g.actor, "edit", resource_type, record_id, payload=payload, files=files, reason=reason
        )
        return mutation_response(outcome)
    except RentalsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update %s %s", collection, record_id)
        return server_error()


@resources_bp.delete("/<collection>/<int:record_id>")
@require_auth
def delete_record_route(collection: str, record_id: int):
    try:
        resource_type = _resource_type(collection)
        body = request.get_json(silent=True) or {}
        reason = body.get("reason") if isinstance(body, dict) else None
        outcome = mutation_service.perform_mutation(
            g.actor, "delete", resource_type, record_id, reason=reason
        )
        return mutation_response(outcome)
    except RentalsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete %s %s", collection, record_id)
        return server_error()
