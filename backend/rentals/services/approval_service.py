# Overview: Service-layer operations for approval requests; submission, review and queries.

"""
Approval Request Service

WHY: Employees may not change business records directly. Their create, edit
and delete attempts are stored as approval requests and only take effect
once a manager or admin approves them.

LIFECYCLE:
    pending -> approved   (payload applied to the live record, same transaction)
    pending -> rejected   (record untouched; staged files deleted)

RULES:
1. A request leaves `pending` exactly once. The transition is claimed with
   UPDATE ... WHERE status = 'pending'; losing that race is AlreadyReviewed.
2. If applying an approved payload fails, the whole transaction rolls back
   and the request stays pending.
3. Applying an approved request has the same effect as the requester making
   the change directly (resource_service.apply_mutation).
4. Edit requests store only the changed fields; a submission that changes
   nothing is refused with NoChangesDetected.
5. Files attached to a request are uploaded to the approvals folders at
   submission time and recorded in `staged_attachments`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import update

from ..errors import (
    AlreadyReviewed,
    Forbidden,
    NoChangesDetected,
    ResourceNotFound,
    StorageError,
    ValidationError,
)
from ..extensions import db
from ..models import ApprovalRequest
from ..time_utils import utcnow
from . import attachment_service, resource_service
from .approval_gate import (
    ACTION_CREATE,
    ACTION_DELETE,
    ACTION_EDIT,
    Actor,
    Role,
    can_review,
    validate_action_type,
    validate_resource_type,
)
from .blob_storage import APPROVAL_FOLDERS, get_blob_store
from .diff_service import diff_resource
from .payment_service import reconcile_after_mutation

logger = logging.getLogger(__name__)


STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"

VALID_STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED)

DECISION_APPROVE = "approve"
DECISION_REJECT = "reject"

_DECISION_STATUS = {
    DECISION_APPROVE: STATUS_APPROVED,
    DECISION_REJECT: STATUS_REJECTED,
}

MAX_TEXT_LENGTH = 500


@dataclass
class ReviewOutcome:
    approval: dict
    applied: dict | None = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        payload = {"approval": self.approval, "applied": self.applied}
        if self.warnings:
            payload["warnings"] = self.warnings
        return payload


# =============================================================================
# SUBMISSION
# =============================================================================

def submit_approval_request(
    actor: Actor,
    action_type: str,
    resource_type: str,
    resource_id=None,
    reason: str | None = None,
    original_data: dict | None = None,
    proposed_data: dict | None = None,
    new_files=None,
) -> dict:
    """
    Create a pending approval request.

    Args:
        actor: the requester
        original_data: snapshot of the record; loaded when omitted
        proposed_data: full payload for create, proposed record for edit
        new_files: uploads to attach once the request is approved

    Returns:
        The serialised request

    Raises:
        ValidationError, ResourceNotFound, NoChangesDetected, StorageError
    """
    validate_action_type(action_type)
    validate_resource_type(resource_type)
    policy = resource_service.get_policy(resource_type)
    reason = _clean_text(reason, "reason")

    if action_type in (ACTION_EDIT, ACTION_DELETE):
        if resource_id in (None, ""):
            raise ValidationError(f"resource_id is required for {action_type} requests")
        resource_id = resource_service.find_by_id(resource_type, resource_id).id
        if original_data is None:
            original_data = resource_service.snapshot(resource_type, resource_id)
    else:
        resource_id = None

    proposed = resource_service.clean_payload(resource_type, proposed_data)
    files = attachment_service.real_files(new_files)
    if files and not policy.attachment_field:
        raise ValidationError(f"{resource_type} records do not take attachments")
    new_data = None
    removed = []

    if action_type == ACTION_CREATE:
        if not proposed:
            raise ValidationError("No data provided")
        resource_service.validate(resource_type, proposed, partial=False)
        new_data = _without(proposed, policy.attachment_field)

    elif action_type == ACTION_EDIT:
        new_data = diff_resource(
            original_data,
            proposed,
            field_kinds=policy.field_kinds,
            attachment_field=policy.attachment_field,
        )
        if new_data:
            resource_service.validate(resource_type, new_data, partial=True)

        keep = proposed.get(policy.attachment_field) if policy.attachment_field else None
        if keep is not None:
            current = (original_data or {}).get(policy.attachment_field) or []
            keep = attachment_service.normalize_attachments(keep)
            # Store what the requester dropped, not the keep list: files added
            # to the record while the request waits must survive approval
            removed = attachment_service.plan(current, keep).deleted

        if not new_data and not files and not removed:
            raise NoChangesDetected()

    blob_store = get_blob_store()
    staged = []
    if files and action_type != ACTION_DELETE:
        try:
            staged = attachment_service.upload_files(
                files, blob_store, APPROVAL_FOLDERS[resource_type], uploaded_by=actor.id
            )
        except StorageError as exc:
            attachment_service.delete_blobs(exc.partial, blob_store)
            raise

    approval = ApprovalRequest(
        requested_by_user_id=actor.id,
        action_type=action_type,
        resource_type=resource_type,
        resource_id=resource_id,
        original_data=original_data,
        new_data=new_data,
        staged_attachments=staged,
        removed_attachments=removed,
        reason=reason,
        status=STATUS_PENDING,
    )
    try:
        db.session.add(approval)
        db.session.commit()
    except Exception:
        db.session.rollback()
        attachment_service.delete_blobs(staged, blob_store)
        raise

    logger.info(
        "Approval request %s submitted by user %s: %s %s %s",
        approval.id, actor.id, action_type, resource_type, resource_id,
    )
    return approval.to_dict()


# =============================================================================
# REVIEW
# =============================================================================

def resolve_approval_request(request_id: int, decision: str, reviewer: Actor, comment: str | None = None) -> ReviewOutcome:
    """
    Approve or reject a pending request.

    Raises:
        ValidationError: unknown decision
        Forbidden: reviewer is not a manager or admin
        ResourceNotFound: no such request
        AlreadyReviewed: the request is no longer pending
        any error from applying the payload (request stays pending)
    """
    new_status = _DECISION_STATUS.get(decision)
    if new_status is None:
        raise ValidationError("Invalid decision. Must be 'approve' or 'reject'")
    if not can_review(reviewer):
        raise Forbidden("Only managers and admins can review approval requests")
    comment = _clean_text(comment, "comment")

    approval = _get_or_404(request_id)
    if approval.status != STATUS_PENDING:
        raise AlreadyReviewed(approval.status)

    claimed = db.session.execute(
        update(ApprovalRequest)
        .where(ApprovalRequest.id == approval.id, ApprovalRequest.status == STATUS_PENDING)
        .values(
            status=new_status,
            reviewed_by_user_id=reviewer.id,
            reviewed_at=utcnow(),
            review_comment=comment,
        )
    )
    if claimed.rowcount == 0:
        db.session.rollback()
        db.session.expire(approval)
        raise AlreadyReviewed(approval.status)

    blob_store = get_blob_store()
    applied = None
    if new_status == STATUS_APPROVED:
        try:
            applied = resource_service.apply_mutation(
                approval.action_type,
                approval.resource_type,
                approval.resource_id,
                approval.new_data,
                actor_id=approval.requested_by_user_id,
                staged_attachments=approval.staged_attachments or [],
                removed_attachments=approval.removed_attachments or [],
                blob_store=blob_store,
            )
            if approval.action_type == ACTION_CREATE:
                db.session.execute(
                    update(ApprovalRequest)
                    .where(ApprovalRequest.id == approval.id)
                    .values(resource_id=applied.resource_id)
                )
            db.session.commit()
        except Exception:
            db.session.rollback()
            logger.warning("Applying approval request %s failed; left pending", approval.id, exc_info=True)
            raise
    else:
        db.session.commit()
        failed = attachment_service.delete_blobs(approval.staged_attachments, blob_store)
        if failed:
            logger.warning("Approval request %s: %d staged files not deleted", approval.id, len(failed))

    db.session.expire(approval)
    logger.info("Approval request %s %s by user %s", approval.id, new_status, reviewer.id)

    warnings = reconcile_after_mutation(applied.reservation_ids) if applied else []
    return ReviewOutcome(
        approval=approval.to_dict(),
        applied=applied.record if applied else None,
        warnings=warnings,
    )


# =============================================================================
# QUERIES
# =============================================================================

def list_approval_requests(reviewer: Actor, status: str | None = None) -> list[dict]:
    """All requests, newest first. Reviewers only."""
    if not can_review(reviewer):
        raise Forbidden("Only managers and admins can list approval requests")
    query = db.session.query(ApprovalRequest)
    if status:
        query = query.filter(ApprovalRequest.status == _validate_status(status))
    return [a.to_dict() for a in query.order_by(ApprovalRequest.created_at.desc(), ApprovalRequest.id.desc()).all()]


def count_pending_requests(actor: Actor) -> int:
    """Pending request count for the review badge; 0 for non-reviewers."""
    if not can_review(actor):
        return 0
    return db.session.query(ApprovalRequest).filter(ApprovalRequest.status == STATUS_PENDING).count()


def list_my_requests(actor: Actor, status: str | None = None) -> list[dict]:
    query = db.session.query(ApprovalRequest).filter(ApprovalRequest.requested_by_user_id == actor.id)
    if status:
        query = query.filter(ApprovalRequest.status == _validate_status(status))
    return [a.to_dict() for a in query.order_by(ApprovalRequest.created_at.desc(), ApprovalRequest.id.desc()).all()]


def get_approval_request(request_id: int, actor: Actor) -> dict:
    """Visible to reviewers and to the requester."""
    approval = _get_or_404(request_id)
    if approval.requested_by_user_id != actor.id and not can_review(actor):
        raise Forbidden("You can only view your own approval requests")
    return approval.to_dict()


def delete_approval_request(request_id: int, actor: Actor) -> None:
    """Remove a request outright (admin only). Staged files of a pending request are deleted."""
    if actor.role is not Role.ADMIN:
        raise Forbidden("Only admins can delete approval requests")

    approval = _get_or_404(request_id)
    staged = list(approval.staged_attachments or []) if approval.status == STATUS_PENDING else []

    db.session.delete(approval)
    db.session.commit()

    if staged:
        attachment_service.delete_blobs(staged, get_blob_store())
    logger.info("Approval request %s deleted by admin %s", request_id, actor.id)


# =============================================================================
# HELPERS
# =============================================================================

def _get_or_404(request_id) -> ApprovalRequest:
    try:
        request_id = int(request_id)
    except (TypeError, ValueError):
        raise ValidationError("Invalid approval request id")
    approval = db.session.get(ApprovalRequest, request_id)
    if approval is None:
        raise ResourceNotFound("Approval request not found")
    return approval


def _validate_status(status: str) -> str:
    if status not in VALID_STATUSES:
        raise ValidationError(f"Invalid status '{status}'. Must be one of: {', '.join(VALID_STATUSES)}")
    return status


def _clean_text(value, name: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be a string")
    value = value.strip()
    if len(value) > MAX_TEXT_LENGTH:
        raise ValidationError(f"{name} must be at most {MAX_TEXT_LENGTH} characters")
    return value or None


def _without(payload: dict, key: str | None) -> dict:
    if key is None:
        return dict(payload)
    return {k: v for k, v in payload.items() if k != key}
