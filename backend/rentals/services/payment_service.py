# Overview: Service-layer operations for payments; keeps reservation balances in sync with their payments.

"""
Payment Reconciliation Service

WHY: A reservation's remaining balance and payment status are derived from
its payments. They are recomputed from scratch after every payment create,
update or delete, and after every reservation create or edit, so the stored
values never drift from the payment rows.

CALCULATION:
    total_paid        = round(sum(amounts), 2)   (missing/non-numeric -> 0)
    remaining_balance = max(0, round(total - total_paid, 2))
    payment_status    = "Not Paid"       if total_paid == 0
                        "Paid"           if remaining_balance == 0
                        "Partially Paid" if total_paid > 0
                        "Pending"        otherwise

Every payment linked to the reservation counts, whatever its own status.
Only remaining_balance and payment_status are written back; no other column
of the reservation is touched.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from ..errors import RentalsError, ResourceNotFound, StorageError
from ..extensions import db
from ..models import Reservation
from .concurrency import run_with_retry
from .resource_service import commit_mutation, find_payments_by_reservation

logger = logging.getLogger(__name__)


# =============================================================================
# PAYMENT STATUS (CONSTANTS)
# =============================================================================

PAYMENT_STATUS_NOT_PAID = "Not Paid"
PAYMENT_STATUS_PARTIAL = "Partially Paid"
PAYMENT_STATUS_PAID = "Paid"
PAYMENT_STATUS_PENDING = "Pending"


@dataclass(frozen=True)
class PaymentReconciliation:
    total_paid: float
    remaining_balance: float
    payment_status: str

    def to_dict(self) -> dict:
        return asdict(self)


def _as_amount(value) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(amount) or math.isinf(amount):
        return 0.0
    return amount


def calculate_payment_status(reservation_total, payment_amounts) -> PaymentReconciliation:
    """Pure calculation; see module docstring."""
    total_paid = round(sum(_as_amount(a) for a in payment_amounts or []), 2)
    remaining = round(_as_amount(reservation_total) - total_paid, 2)
    remaining_balance = max(0.0, remaining)

    if total_paid == 0:
        status = PAYMENT_STATUS_NOT_PAID
    elif remaining_balance == 0:
        status = PAYMENT_STATUS_PAID
    elif total_paid > 0:
        status = PAYMENT_STATUS_PARTIAL
    else:
        # Negative sums (refund rows) with a balance left
        status = PAYMENT_STATUS_PENDING

    return PaymentReconciliation(
        total_paid=total_paid,
        remaining_balance=remaining_balance,
        payment_status=status,
    )


# =============================================================================
# RECONCILIATION
# =============================================================================

def reconcile_reservation_payments(reservation_id: int) -> PaymentReconciliation:
    """
    Recompute and persist remaining_balance / payment_status.

    Raises:
        ResourceNotFound: reservation does not exist
        StorageError: the update could not be persisted
    """
    def _do_reconcile():
        reservation = db.session.get(Reservation, reservation_id)
        if reservation is None:
            raise ResourceNotFound(f"Reservation {reservation_id} not found")

        payments = find_payments_by_reservation(reservation_id)
        result = calculate_payment_status(reservation.total, [p.amount for p in payments])

        # Column-scoped write; concurrent edits to other fields are preserved
        db.session.execute(
            update(Reservation)
            .where(Reservation.id == reservation_id)
            .values(
                remaining_balance=result.remaining_balance,
                payment_status=result.payment_status,
            )
        )
        db.session.commit()
        db.session.expire(reservation)
        return result

    try:
        result = run_with_retry(_do_reconcile)
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise StorageError(f"Failed to reconcile payments for reservation {reservation_id}") from exc

    logger.info(
        "Reconciled reservation %s: paid=%.2f remaining=%.2f status=%s",
        reservation_id, result.total_paid, result.remaining_balance, result.payment_status,
    )
    return result


def reconcile_after_mutation(reservation_ids) -> list[str]:
    """
    Reconcile every affected reservation after a committed mutation.

    A failure here never undoes the mutation. It is logged and returned as
    a warning; the next reconciliation of that reservation repairs it.
    """
    warnings = []
    for reservation_id in sorted({r for r in reservation_ids or [] if r is not None}):
        try:
            reconcile_reservation_payments(reservation_id)
        except (RentalsError, SQLAlchemyError) as exc:
            db.session.rollback()
            logger.warning("Payment reconciliation failed for reservation %s: %s", reservation_id, exc)
            warnings.append(f"Payment reconciliation failed for reservation {reservation_id}")
    return warnings


def reconcile_all_reservations() -> dict:
    """Recompute every reservation; used by the maintenance CLI."""
    ids = [row.id for row in db.session.query(Reservation.id).order_by(Reservation.id).all()]
    warnings = reconcile_after_mutation(ids)
    return {"reconciled": len(ids) - len(warnings), "failed": len(warnings), "warnings": warnings}


def get_payment_summary(reservation_id: int) -> dict:
    """Read-only view of a reservation's payments and derived balance."""
    reservation = db.session.get(Reservation, reservation_id)
    if reservation is None:
        raise ResourceNotFound(f"Reservation {reservation_id} not found")

    payments = find_payments_by_reservation(reservation_id)
    computed = calculate_payment_status(reservation.total, [p.amount for p in payments])

    return {
        "reservation_id": reservation.id,
        "total": _as_amount(reservation.total),
        "payments": [p.to_dict() for p in payments],
        "computed": computed.to_dict(),
        "stored": {
            "remaining_balance": reservation.remaining_balance,
            "payment_status": reservation.payment_status,
        },
        "in_sync": (
            reservation.payment_status == computed.payment_status
            and _as_amount(reservation.remaining_balance) == computed.remaining_balance
        ),
    }


# =============================================================================
# PAYMENT CRUD (ungated; callers have already passed the approval gate)
# =============================================================================

@dataclass
class PaymentResult:
    payment: dict | None
    warnings: list[str]


def create_payment(data: dict, *, actor_id: int | None = None, files=()) -> PaymentResult:
    applied = commit_mutation("create", "payment", None, data, actor_id=actor_id, new_files=files)
    return PaymentResult(payment=applied.record, warnings=reconcile_after_mutation(applied.reservation_ids))


def update_payment(payment_id: int, data: dict, *, actor_id: int | None = None, files=()) -> PaymentResult:
    applied = commit_mutation("edit", "payment", payment_id, data, actor_id=actor_id, new_files=files)
    warnings = reconcile_after_mutation(applied.reservation_ids)
    if applied.upload_error is not None:
        raise applied.upload_error
    return PaymentResult(payment=applied.record, warnings=warnings)


def delete_payment(payment_id: int) -> PaymentResult:
    applied = commit_mutation("delete", "payment", payment_id)
    return PaymentResult(payment=applied.record, warnings=reconcile_after_mutation(applied.reservation_ids))
