# Overview: Flask API routes for approval requests; submission, review queue and review decisions.

"""
Approval Request API Routes

SECURITY:
- Listing all requests and reviewing require manager or admin
- Requesters see their own requests via /my-requests
- Deleting a request is an admin-only escape hatch
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_admin, require_auth, require_reviewer
from ..errors import RentalsError, ValidationError
from ..services import approval_service
from .common import error_response, parse_mutation_request, server_error


approvals_bp = Blueprint("approvals", __name__, url_prefix="/api/approvals")


@approvals_bp.get("")
@require_auth
@require_reviewer
def list_approvals_route():
    """
    Review queue, newest first.

    Query params:
        status: pending, approved or rejected (default: all)
    """
    try:
        approvals = approval_service.list_approval_requests(g.actor, status=request.args.get("status"))
        return jsonify({"approvals": approvals}), 200
    except RentalsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list approval requests")
        return server_error()


@approvals_bp.post("")
@require_auth
def submit_approval_route():
    """
    Submit a change request explicitly.

    Request body:
    {
        "action_type": "edit",
        "resource_type": "customer",
        "resource_id": 7,
        "new_data": {...},        (proposed record; diffed against the current one)
        "original_data": {...},   (optional snapshot; loaded when omitted)
        "reason": "Client called to update phone"
    }

    Returns:
        201: Request created
        400: Invalid input or no changes detected
        404: Resource not found
    """
    try:
        payload, files, reason = parse_mutation_request()
        proposed = payload.get("new_data")
        if proposed is None:
            proposed = payload.get("proposed_data")
        if proposed is not None and not isinstance(proposed, dict):
            raise ValidationError("new_data must be an object")

        approval = approval_service.submit_approval_request(
            g.actor,
            payload.get("action_type"),
            payload.get("resource_type"),
            resource_id=payload.get("resource_id"),
            reason=reason,
            original_data=payload.get("original_data"),
            proposed_data=proposed,
            new_files=files,
        )
        changed = len(approval["changed_fields"])
        message = "Your request has been submitted for approval."
        if approval["action_type"] == "edit" and changed:
            message += f" {changed} field(s) will be updated."
        return jsonify({"message": message, "approval": approval}), 201
    except RentalsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to submit approval request")
        return server_error()


@approvals_bp.get("/count")
@require_auth
def pending_count_route():
    """Pending requests awaiting review (0 for employees)."""
    try:
        return jsonify({"count": approval_service.count_pending_requests(g.actor)}), 200
    except Exception:
        current_app.logger.exception("Failed to count approval requests")
        return server_error()


@approvals_bp.get("/my-requests")
@require_auth
def my_requests_route():
    try:
        approvals = approval_service.list_my_requests(g.actor, status=request.args.get("status"))
        return jsonify({"approvals": approvals}), 200
    except RentalsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list own approval requests")
        return server_error()


@approvals_bp.get("/<int:request_id>")
@require_auth
def get_approval_route(request_id: int):
    try:
        return jsonify(approval_service.get_approval_request(request_id, g.actor)), 200
    except RentalsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get approval request %s", request_id)
        return server_error()


@approvals_bp.put("/<int:request_id>/review")
@require_auth
@require_reviewer
def review_approval_route(request_id: int):
    """
    Approve or reject a pending request.

    Request body:
    {
        "action": "approve" | "reject",
        "comment": "optional note"
    }

    Returns:
        200: Reviewed (approved requests are applied)
        404: Request not found
        409: Already reviewed
    """
    try:
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            raise ValidationError("Invalid JSON payload")
        decision = data.get("action") or data.get("decision")

        outcome = approval_service.resolve_approval_request(
            request_id, decision, g.actor, comment=data.get("comment")
        )
        verb = "approved and executed" if decision == "approve" else "rejected"
        return jsonify({"message": f"Request has been {verb}", **outcome.to_dict()}), 200
    except RentalsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to review approval request %s", request_id)
        return server_error()


@approvals_bp.delete("/<int:request_id>")
@require_auth
@require_admin
def delete_approval_route(request_id: int):
    try:
        approval_service.delete_approval_request(request_id, g.actor)
        return jsonify({"message": "Approval request deleted"}), 200
    except RentalsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete approval request %s", request_id)
        return server_error()
