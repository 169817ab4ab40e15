from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Customer(db.Model):
    """Rental customer (client or prospect) with supporting documents."""
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    whatsapp = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    id_number = db.Column(db.String(64), nullable=True)

    # Form inputs are kept as entered ("YYYY-MM-DD" / "HH:MM")
    wedding_date = db.Column(db.String(10), nullable=True)
    wedding_time = db.Column(db.String(5), nullable=True)
    wedding_location = db.Column(db.String(255), nullable=True)
    wedding_city = db.Column(db.String(100), nullable=True)

    type = db.Column(db.String(16), nullable=False, default="Client")  # Client, Prospect

    attachments = db.Column(db.JSON, nullable=False, default=list)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "whatsapp": self.whatsapp,
            "address": self.address,
            "id_number": self.id_number,
            "wedding_date": self.wedding_date,
            "wedding_time": self.wedding_time,
            "wedding_location": self.wedding_location,
            "wedding_city": self.wedding_city,
            "type": self.type,
            "attachments": list(self.attachments or []),
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
        }
