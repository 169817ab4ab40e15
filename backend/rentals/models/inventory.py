from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Product(db.Model):
    """
    Rentable catalogue item.

    Exposed to the approval workflow under the resource type "item".
    """
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(100), nullable=True)
    sub_category = db.Column(db.String(100), nullable=True)

    rental_cost = db.Column(db.Numeric(12, 2, asdecimal=False), nullable=False, default=0)
    buy_cost = db.Column(db.Numeric(12, 2, asdecimal=False), nullable=True)
    sell_price = db.Column(db.Numeric(12, 2, asdecimal=False), nullable=True)
    size = db.Column(db.Integer, nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    status = db.Column(db.String(16), nullable=False, default="Draft")  # Draft, Published

    # Photos, videos and documents share one attachment list
    attachments = db.Column(db.JSON, nullable=False, default=list)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "sub_category": self.sub_category,
            "rental_cost": self.rental_cost,
            "buy_cost": self.buy_cost,
            "sell_price": self.sell_price,
            "size": self.size,
            "quantity": self.quantity,
            "status": self.status,
            "attachments": list(self.attachments or []),
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
        }
