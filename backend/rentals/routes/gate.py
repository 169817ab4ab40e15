# Overview: Flask API route exposing the approval gate verdict to clients.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..errors import RentalsError
from ..services.approval_gate import evaluate_gate
from .common import error_response, server_error


gate_bp = Blueprint("gate", __name__, url_prefix="/api/gate")


@gate_bp.post("/evaluate")
@require_auth
def evaluate_gate_route():
    """
    Tell the client whether a mutation would be applied or sent for approval.

    Request body:
    {
        "action_type": "create" | "edit" | "delete",
        "resource_type": "customer" | "item" | "payment" | "reservation" | "cost"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        decision = evaluate_gate(g.actor, data.get("action_type"), data.get("resource_type"))
        return jsonify(decision.to_dict()), 200
    except RentalsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to evaluate approval gate")
        return server_error()
