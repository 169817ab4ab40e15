# Overview: Approval gate; decides whether a mutation is applied directly or deferred for review.

"""
Approval Gate

POLICY:
    admin     -> applied directly
    manager   -> applied directly (no separate audit trail from admin)
    employee  -> create / edit / delete deferred to an approval request
    unknown   -> deferred (fail closed)

The resource type is validated but does not change the verdict today; it is
part of the contract so per-resource rules can be added without touching
callers.

Unauthenticated callers never get here: `require_auth` rejects them first.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum

from ..errors import ValidationError


ACTION_CREATE = "create"
ACTION_EDIT = "edit"
ACTION_DELETE = "delete"

VALID_ACTION_TYPES = (ACTION_CREATE, ACTION_EDIT, ACTION_DELETE)

VALID_RESOURCE_TYPES = ("customer", "item", "payment", "reservation", "cost")


class Role(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    EMPLOYEE = "employee"

    @classmethod
    def parse(cls, value) -> "Role | None":
        """Map a stored role string to a Role; anything unrecognised is None."""
        if isinstance(value, Role):
            return value
        if not isinstance(value, str) or not value.strip():
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class Actor:
    """Authenticated caller, as plain data."""
    id: int
    role: Role | None
    name: str | None = None
    email: str | None = None

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(id=user.id, role=Role.parse(user.role), name=user.name, email=user.email)


@dataclass(frozen=True)
class GateDecision:
    requires_approval: bool
    role: str | None
    action_type: str
    resource_type: str

    def to_dict(self) -> dict:
        return asdict(self)


def validate_action_type(action_type: str) -> None:
    if action_type not in VALID_ACTION_TYPES:
        raise ValidationError(
            f"Invalid action type '{action_type}'. Must be one of: {', '.join(VALID_ACTION_TYPES)}"
        )


def validate_resource_type(resource_type: str) -> None:
    if resource_type not in VALID_RESOURCE_TYPES:
        raise ValidationError(
            f"Invalid resource type '{resource_type}'. Must be one of: {', '.join(VALID_RESOURCE_TYPES)}"
        )


def requires_approval(actor: Actor, action_type: str, resource_type: str) -> bool:
    """Pure policy decision. See module docstring for the table."""
    role = actor.role if actor else None

    if role in (Role.ADMIN, Role.MANAGER):
        return False
    # Employees, and any role or action this policy does not know
    return True


def can_review(actor: Actor) -> bool:
    """Managers and admins may approve or reject change requests."""
    role = actor.role if actor else None
    return role in (Role.ADMIN, Role.MANAGER)


def evaluate_gate(actor: Actor, action_type: str, resource_type: str) -> GateDecision:
    """Validate the attempted mutation and return the gate verdict."""
    validate_action_type(action_type)
    validate_resource_type(resource_type)
    return GateDecision(
        requires_approval=requires_approval(actor, action_type, resource_type),
        role=actor.role.value if actor and actor.role else None,
        action_type=action_type,
        resource_type=resource_type,
    )
