from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class ApprovalRequest(db.Model):
    """
    Deferred mutation awaiting review.

    STATE MACHINE:
        pending -> approved
        pending -> rejected

    RULES:
    1. Each request leaves `pending` exactly once (guarded UPDATE on status)
    2. reviewed_by_user_id / reviewed_at are set iff status != pending
    3. original_data is a snapshot taken at request time and never changes
    4. new_data holds the changed fields for "edit", the full payload for
       "create", and nothing for "delete"
    5. staged_attachments lists blobs uploaded with the request; they become
       live on approval and are deleted on rejection
    6. removed_attachments lists the stored entries an edit drops; approval
       removes only those, so files added to the record meanwhile are kept
    """
    __tablename__ = "approval_requests"
    __table_args__ = (
        db.Index("ix_approval_requests_status_created", "status", "created_at"),
        db.Index("ix_approval_requests_requested_by", "requested_by_user_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    requested_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    action_type = db.Column(db.String(16), nullable=False)  # create, edit, delete
    resource_type = db.Column(db.String(32), nullable=False)  # customer, item, payment, reservation, cost
    resource_id = db.Column(db.Integer, nullable=True)

    original_data = db.Column(db.JSON, nullable=True)
    new_data = db.Column(db.JSON, nullable=True)
    staged_attachments = db.Column(db.JSON, nullable=False, default=list)
    removed_attachments = db.Column(db.JSON, nullable=False, default=list)

    reason = db.Column(db.String(500), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    reviewed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    review_comment = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())

    requested_by = db.relationship("User", foreign_keys=[requested_by_user_id])
    reviewed_by = db.relationship("User", foreign_keys=[reviewed_by_user_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "requested_by": self.requested_by.to_ref() if self.requested_by else None,
            "action_type": self.action_type,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "original_data": self.original_data,
            "new_data": self.new_data,
            "changed_fields": self.changed_fields(),
            "removed_attachments": self.removed_attachments or [],
            "reason": self.reason,
            "status": self.status,
            "reviewed_by": self.reviewed_by.to_ref() if self.reviewed_by else None,
            "reviewed_at": to_utc_z(self.reviewed_at) if self.reviewed_at else None,
            "review_comment": self.review_comment,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
        }

    def changed_fields(self) -> list[str]:
        if self.action_type != "edit":
            return []
        fields = set(self.new_data or {})
        if self.removed_attachments or self.staged_attachments:
            fields.add("attachments")
        return sorted(fields)
