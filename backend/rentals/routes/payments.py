# Overview: Flask API routes for payments; gated mutations plus reservation balance endpoints.

"""
Payment API Routes

DESIGN:
- Payment create/update/delete go through the approval gate like every
  other record; applied changes reconcile the affected reservation(s)
- Summary shows stored vs computed balance for a reservation
- Reconcile re-derives a reservation's balance on demand (self-heal)
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_reviewer
from ..errors import RentalsError
from ..extensions import db
from ..models import Payment
from ..services import mutation_service, payment_service, resource_service
from .common import error_response, mutation_response, parse_mutation_request, server_error


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


# =============================================================================
# PAYMENT QUERIES
# =============================================================================

@payments_bp.get("")
@require_auth
def list_payments_route():
    """
    List payments, newest first.

    Query params:
        reservation_id: only payments of this reservation
        client_id: only payments of this customer
    """
    try:
        query = db.session.query(Payment)
        reservation_id = request.args.get("reservation_id", type=int)
        client_id = request.args.get("client_id", type=int)
        if reservation_id is not None:
            query = query.filter(Payment.reservation_id == reservation_id)
        if client_id is not None:
            query = query.filter(Payment.client_id == client_id)
        payments = query.order_by(Payment.payment_date.desc(), Payment.id.desc()).all()
        return jsonify({"payments": [p.to_dict() for p in payments]}), 200
    except Exception:
        current_app.logger.exception("Failed to list payments")
        return server_error()


@payments_bp.get("/<int:payment_id>")
@require_auth
def get_payment_route(payment_id: int):
    try:
        return jsonify(resource_service.snapshot("payment", payment_id)), 200
    except RentalsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get payment %s", payment_id)
        return server_error()


@payments_bp.get("/reservations/<int:reservation_id>/summary")
@require_auth
def get_reservation_summary_route(reservation_id: int):
    try:
        return jsonify(payment_service.get_payment_summary(reservation_id)), 200
    except RentalsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get payment summary for reservation %s", reservation_id)
        return server_error()


@payments_bp.post("/reservations/<int:reservation_id>/reconcile")
@require_auth
@require_reviewer
def reconcile_reservation_route(reservation_id: int):
    """Recompute remaining balance and payment status from the payment rows."""
    try:
        result = payment_service.reconcile_reservation_payments(reservation_id)
        return jsonify({"reservation_id": reservation_id, **result.to_dict()}), 200
    except RentalsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reconcile reservation %s", reservation_id)
        return server_error()


# =============================================================================
# PAYMENT MUTATIONS (GATED)
# =============================================================================

@payments_bp.post("")
@require_auth
def create_payment_route():
    """
    Record a payment.

    Request body:
    {
        "reservation_id": 12,
        "amount": 300,
        "payment_date": "2025-06-01T10:00:00Z",
        "payment_method": "Cash",
        "payment_type": "Advance",
        "client_id": 4  (optional, defaults to the reservation's client)
    }

    Returns:
        201: Payment created, reservation reconciled
        202: Submitted for approval
    """
    try:
        payload, files, reason = parse_mutation_request()
        outcome = mutation_service.perform_mutation(
            g.actor, "create", "payment", payload=payload, files=files, reason=reason
        )
        return mutation_response(outcome, created=True)
    except RentalsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create payment")
        return server_error()


@payments_bp.put("/<int:payment_id>")
@require_auth
def update_payment_route(payment_id: int):
    try:
        payload, files, reason = parse_mutation_request()
        outcome = mutation_service.perform_mutation(
            g.actor, "edit", "payment", payment_id, payload=payload, files=files, reason=reason
        )
        return mutation_response(outcome)
    except RentalsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update payment %s", payment_id)
        return server_error()


@payments_bp.delete("/<int:payment_id>")
@require_auth
def delete_payment_route(payment_id: int):
    try:
        body = request.get_json(silent=True) or {}
        reason = body.get("reason") if isinstance(body, dict) else None
        outcome = mutation_service.perform_mutation(g.actor, "delete", "payment", payment_id, reason=reason)
        return mutation_response(outcome)
    except RentalsError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete payment %s", payment_id)
        return server_error()
