# Overview: Service-layer entry point for gated mutations of business records.

"""
Mutation Service

Every create, edit and delete issued through the API goes through
perform_mutation(). The approval gate decides whether the change is applied
immediately (admin, manager) or stored as a pending approval request
(employee, unknown role).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from . import approval_service, resource_service
from .approval_gate import ACTION_CREATE, Actor, evaluate_gate
from .payment_service import reconcile_after_mutation

logger = logging.getLogger(__name__)


OUTCOME_APPLIED = "applied"
OUTCOME_PENDING = "pending_approval"


@dataclass
class MutationOutcome:
    status: str
    record: dict | None = None
    approval: dict | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def deferred(self) -> bool:
        return self.status == OUTCOME_PENDING

    def to_dict(self) -> dict:
        payload = {"status": self.status}
        if self.deferred:
            payload["approval"] = self.approval
            payload["message"] = "Change submitted for approval"
        else:
            payload["record"] = self.record
        if self.warnings:
            payload["warnings"] = self.warnings
        return payload


def perform_mutation(
    actor: Actor,
    action_type: str,
    resource_type: str,
    resource_id=None,
    payload: dict | None = None,
    files=None,
    reason: str | None = None,
) -> MutationOutcome:
    decision = evaluate_gate(actor, action_type, resource_type)

    if decision.requires_approval:
        approval = approval_service.submit_approval_request(
            actor,
            action_type,
            resource_type,
            resource_id=resource_id,
            reason=reason,
            proposed_data=payload,
            new_files=files,
        )
        return MutationOutcome(status=OUTCOME_PENDING, approval=approval)

    return apply_direct(actor, action_type, resource_type, resource_id, payload, files)


def apply_direct(actor: Actor, action_type: str, resource_type: str, resource_id=None, payload=None, files=None) -> MutationOutcome:
    """Apply immediately, then reconcile any reservation the change touched."""
    if action_type != ACTION_CREATE:
        resource_service.find_by_id(resource_type, resource_id)

    applied = resource_service.commit_mutation(
        action_type,
        resource_type,
        resource_id,
        payload,
        actor_id=actor.id,
        new_files=files or (),
    )

    warnings = reconcile_after_mutation(applied.reservation_ids)
    if applied.failed_deletes:
        warnings.append(f"{len(applied.failed_deletes)} attachment(s) could not be deleted from storage")
    if applied.upload_error is not None:
        raise applied.upload_error

    return MutationOutcome(status=OUTCOME_APPLIED, record=applied.record, warnings=warnings)
