from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Reservation(db.Model):
    """
    Rental reservation.

    WHY: `total` is the contractual price, maintained by whoever edits the
    reservation. `remaining_balance` and `payment_status` are derived from
    the reservation's payments and are written only by payment
    reconciliation, never by a client payload.

    PAYMENT STATUS:
    - Not Paid: no money received
    - Partially Paid: some money received, balance outstanding
    - Paid: balance is zero (overpayment clamps to zero)
    - Pending: initial value before the first reconciliation
    """
    __tablename__ = "reservations"
    __table_args__ = (
        db.Index("ix_reservations_client_pickup", "client_id", "pickup_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    type = db.Column(db.String(32), nullable=False)
    client_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    status = db.Column(db.String(16), nullable=False, default="Draft")  # Draft, Confirmed, Cancelled

    # Product ids, in the order they were picked
    item_ids = db.Column(db.JSON, nullable=False, default=list)

    pickup_date = db.Column(db.DateTime(timezone=True), nullable=False)
    return_date = db.Column(db.DateTime(timezone=True), nullable=False)
    availability_date = db.Column(db.DateTime(timezone=True), nullable=True)

    buffer_before = db.Column(db.Integer, nullable=True)
    buffer_after = db.Column(db.Integer, nullable=True)
    availability = db.Column(db.Integer, nullable=True)

    # Financials (computed by the client and stored)
    additional_cost = db.Column(db.Numeric(12, 2, asdecimal=False), nullable=False, default=0)
    items_total = db.Column(db.Numeric(12, 2, asdecimal=False), nullable=False, default=0)
    subtotal = db.Column(db.Numeric(12, 2, asdecimal=False), nullable=False, default=0)
    security_deposit_amount = db.Column(db.Numeric(12, 2, asdecimal=False), nullable=False, default=0)
    advance_amount = db.Column(db.Numeric(12, 2, asdecimal=False), nullable=False, default=0)
    total = db.Column(db.Numeric(12, 2, asdecimal=False), nullable=False, default=0)

    # Derived from payments (see payment_service.reconcile_reservation_payments)
    remaining_balance = db.Column(db.Numeric(12, 2, asdecimal=False), nullable=False, default=0)
    payment_status = db.Column(db.String(16), nullable=False, default="Pending", index=True)

    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())

    client = db.relationship("Customer", backref=db.backref("reservations", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "client_id": self.client_id,
            "status": self.status,
            "item_ids": list(self.item_ids or []),
            "pickup_date": to_utc_z(self.pickup_date),
            "return_date": to_utc_z(self.return_date),
            "availability_date": to_utc_z(self.availability_date) if self.availability_date else None,
            "buffer_before": self.buffer_before,
            "buffer_after": self.buffer_after,
            "availability": self.availability,
            "additional_cost": self.additional_cost,
            "items_total": self.items_total,
            "subtotal": self.subtotal,
            "security_deposit_amount": self.security_deposit_amount,
            "advance_amount": self.advance_amount,
            "total": self.total,
            "remaining_balance": self.remaining_balance,
            "payment_status": self.payment_status,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
        }


class Payment(db.Model):
    """
    Money received against a reservation.

    DESIGN: Payments are separate from reservations (many-to-one) to support
    advances, security deposits and final settlements. Every create, update
    and delete of a payment is followed by reconciliation of its reservation.
    """
    __tablename__ = "payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    client_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    reservation_id = db.Column(db.Integer, db.ForeignKey("reservations.id"), nullable=False, index=True)

    payment_date = db.Column(db.DateTime(timezone=True), nullable=True)
    amount = db.Column(db.Numeric(12, 2, asdecimal=False), nullable=True)

    payment_method = db.Column(db.String(32), nullable=True)  # Cash, Bank Transfer, Credit Card, Check
    payment_type = db.Column(db.String(16), nullable=True)  # Advance, Security, Final, Other
    status = db.Column(db.String(16), nullable=True, default="Completed")  # Pending, Completed, Cancelled, Refunded

    reference = db.Column(db.String(255), nullable=True)
    note = db.Column(db.Text, nullable=True)

    attachments = db.Column(db.JSON, nullable=False, default=list)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())

    reservation = db.relationship("Reservation", backref=db.backref("payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "reservation_id": self.reservation_id,
            "payment_date": to_utc_z(self.payment_date) if self.payment_date else None,
            "amount": self.amount,
            "payment_method": self.payment_method,
            "payment_type": self.payment_type,
            "status": self.status,
            "reference": self.reference,
            "note": self.note,
            "attachments": list(self.attachments or []),
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
        }
