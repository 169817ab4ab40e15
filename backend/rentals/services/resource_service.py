# Overview: Service-layer operations for business records; persistence lookups and the shared mutation apply path.

"""
Resource Service

WHY: Direct mutations (admin/manager) and approved change requests must have
exactly the same effect. Both go through apply_mutation(), which validates
the payload against the resource policy, reconciles attachments and reports
which reservations need their payment fields recomputed.

apply_mutation() never commits. Callers own the transaction and run payment
reconciliation after the commit.

RESOURCE TYPES:
- customer    -> Customer
- item        -> Product
- payment     -> Payment
- reservation -> Reservation
- cost        -> Cost
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError

from ..errors import ResourceNotFound, StorageError, ValidationError
from ..extensions import db
from ..models import Cost, Customer, Payment, Product, Reservation
from ..validation import ModelValidationPolicy, validate_payload
from . import attachment_service
from .approval_gate import ACTION_CREATE, ACTION_DELETE, ACTION_EDIT, validate_action_type
from .blob_storage import UPLOAD_FOLDERS, get_blob_store
from .concurrency import lock_for_update
from .diff_service import (
    KIND_DATETIME,
    KIND_ID_LIST,
    KIND_INTEGER,
    KIND_NUMBER,
    KIND_REF,
    KIND_TEXT,
)

logger = logging.getLogger(__name__)


# Never accepted from clients; silently dropped from payloads
SERVER_MANAGED_FIELDS = frozenset({
    "id",
    "created_at",
    "updated_at",
    "created_by_user_id",
    "remaining_balance",
    "payment_status",
})

PAYMENT_METHODS = ("Cash", "Bank Transfer", "Credit Card", "Check")
PAYMENT_TYPES = ("Advance", "Security", "Final", "Other")
PAYMENT_RECORD_STATUSES = ("Pending", "Completed", "Cancelled", "Refunded")
RESERVATION_STATUSES = ("Draft", "Confirmed", "Cancelled")


@dataclass(frozen=True)
class ResourcePolicy:
    resource_type: str
    model: type
    field_kinds: dict[str, str]
    required_on_create: frozenset[str] = frozenset()
    choices: dict[str, tuple[str, ...]] = field(default_factory=dict)
    non_negative: frozenset[str] = frozenset()
    attachment_field: str | None = "attachments"

    @property
    def validation(self) -> ModelValidationPolicy:
        return ModelValidationPolicy(
            writable_fields=frozenset(self.field_kinds),
            required_on_create=self.required_on_create,
            choices=self.choices,
            non_negative=self.non_negative,
        )

    @property
    def upload_folder(self) -> str:
        return UPLOAD_FOLDERS[self.resource_type]


RESOURCE_POLICIES = {
    "customer": ResourcePolicy(
        resource_type="customer",
        model=Customer,
        field_kinds={
            "first_name": KIND_TEXT,
            "last_name": KIND_TEXT,
            "email": KIND_TEXT,
            "phone": KIND_TEXT,
            "whatsapp": KIND_TEXT,
            "address": KIND_TEXT,
            "id_number": KIND_TEXT,
            "wedding_date": KIND_TEXT,
            "wedding_time": KIND_TEXT,
            "wedding_location": KIND_TEXT,
            "wedding_city": KIND_TEXT,
            "type": KIND_TEXT,
        },
        required_on_create=frozenset({"first_name", "last_name"}),
        choices={"type": ("Client", "Prospect")},
    ),
    "item": ResourcePolicy(
        resource_type="item",
        model=Product,
        field_kinds={
            "name": KIND_TEXT,
            "category": KIND_TEXT,
            "sub_category": KIND_TEXT,
            "rental_cost": KIND_NUMBER,
            "buy_cost": KIND_NUMBER,
            "sell_price": KIND_NUMBER,
            "size": KIND_INTEGER,
            "quantity": KIND_INTEGER,
            "status": KIND_TEXT,
        },
        required_on_create=frozenset({"name", "rental_cost"}),
        choices={"status": ("Draft", "Published")},
        non_negative=frozenset({"rental_cost", "buy_cost", "sell_price", "quantity"}),
    ),
    "payment": ResourcePolicy(
        resource_type="payment",
        model=Payment,
        field_kinds={
            "client_id": KIND_REF,
            "reservation_id": KIND_REF,
            "payment_date": KIND_DATETIME,
            "amount": KIND_NUMBER,
            "payment_method": KIND_TEXT,
            "payment_type": KIND_TEXT,
            "status": KIND_TEXT,
            "reference": KIND_TEXT,
            "note": KIND_TEXT,
        },
        required_on_create=frozenset({"reservation_id", "amount"}),
        choices={
            "payment_method": PAYMENT_METHODS,
            "payment_type": PAYMENT_TYPES,
            "status": PAYMENT_RECORD_STATUSES,
        },
        non_negative=frozenset({"amount"}),
    ),
    "reservation": ResourcePolicy(
        resource_type="reservation",
        model=Reservation,
        field_kinds={
            "type": KIND_TEXT,
            "client_id": KIND_REF,
            "status": KIND_TEXT,
            "item_ids": KIND_ID_LIST,
            "pickup_date": KIND_DATETIME,
            "return_date": KIND_DATETIME,
            "availability_date": KIND_DATETIME,
            "buffer_before": KIND_INTEGER,
            "buffer_after": KIND_INTEGER,
            "availability": KIND_INTEGER,
            "additional_cost": KIND_NUMBER,
            "items_total": KIND_NUMBER,
            "subtotal": KIND_NUMBER,
            "security_deposit_amount": KIND_NUMBER,
            "advance_amount": KIND_NUMBER,
            "total": KIND_NUMBER,
            "notes": KIND_TEXT,
        },
        required_on_create=frozenset({"type", "pickup_date", "return_date"}),
        choices={"status": RESERVATION_STATUSES},
        non_negative=frozenset({
            "additional_cost", "items_total", "subtotal",
            "security_deposit_amount", "advance_amount", "total",
        }),
        attachment_field=None,
    ),
    "cost": ResourcePolicy(
        resource_type="cost",
        model=Cost,
        field_kinds={
            "name": KIND_TEXT,
            "category": KIND_TEXT,
            "amount": KIND_NUMBER,
            "date": KIND_DATETIME,
            "note": KIND_TEXT,
        },
        required_on_create=frozenset({"name", "amount"}),
        non_negative=frozenset({"amount"}),
    ),
}


@dataclass
class AppliedMutation:
    action_type: str
    resource_type: str
    resource_id: int | None
    record: dict | None
    # Reservations whose payment fields must be recomputed after commit
    reservation_ids: set[int] = field(default_factory=set)
    # Blobs uploaded by this mutation (cleanup target if the commit fails)
    uploaded: list[dict] = field(default_factory=list)
    failed_deletes: list[dict] = field(default_factory=list)
    # Set when an edit committed a partial attachment list after a failed upload
    upload_error: StorageError | None = None


# =============================================================================
# PERSISTENCE
# =============================================================================

def get_policy(resource_type: str) -> ResourcePolicy:
    policy = RESOURCE_POLICIES.get(resource_type)
    if policy is None:
        raise ValidationError(
            f"Invalid resource type '{resource_type}'. Must be one of: {', '.join(RESOURCE_POLICIES)}"
        )
    return policy


def find_by_id(resource_type: str, resource_id, *, for_update: bool = False):
    """Load a record or raise ResourceNotFound."""
    policy = get_policy(resource_type)
    record_id = _coerce_id(resource_id, "resource_id")
    query = db.session.query(policy.model).filter_by(id=record_id)
    if for_update:
        query = lock_for_update(query)
    record = query.first()
    if record is None:
        raise ResourceNotFound(f"{resource_type.capitalize()} {resource_id} not found")
    return record


def save(resource_type: str, record):
    """Stage a record and flush it so ids and defaults are assigned."""
    get_policy(resource_type)
    try:
        db.session.add(record)
        db.session.flush()
    except SQLAlchemyError as exc:
        raise StorageError(f"Failed to save {resource_type}") from exc
    return record


def delete(resource_type: str, resource_id) -> dict:
    """Delete a record (flush only) and return its last snapshot."""
    record = find_by_id(resource_type, resource_id, for_update=True)
    snapshot = record.to_dict()
    try:
        db.session.delete(record)
        db.session.flush()
    except SQLAlchemyError as exc:
        raise StorageError(f"Failed to delete {resource_type} {resource_id}") from exc
    return snapshot


def find_payments_by_reservation(reservation_id) -> list[Payment]:
    """All payments linked to a reservation, regardless of payment status."""
    return (
        db.session.query(Payment)
        .filter(Payment.reservation_id == reservation_id)
        .order_by(Payment.payment_date, Payment.id)
        .all()
    )


def snapshot(resource_type: str, resource_id) -> dict:
    return find_by_id(resource_type, resource_id).to_dict()


def clean_payload(resource_type: str, payload) -> dict:
    """Drop server-managed keys; reject anything that is not an object."""
    get_policy(resource_type)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return {k: v for k, v in payload.items() if k not in SERVER_MANAGED_FIELDS}


def validate(resource_type: str, payload: dict, *, partial: bool) -> dict:
    """Validate a cleaned payload; the attachment field is not part of the patch."""
    policy = get_policy(resource_type)
    fields = {k: v for k, v in payload.items() if k != policy.attachment_field}
    return validate_payload(model=policy.model, payload=fields, policy=policy.validation, partial=partial)


# =============================================================================
# APPLY
# =============================================================================

def apply_mutation(
    action_type: str,
    resource_type: str,
    resource_id=None,
    data: dict | None = None,
    *,
    actor_id: int | None = None,
    new_files=(),
    staged_attachments=(),
    removed_attachments=(),
    blob_store=None,
) -> AppliedMutation:
    """
    Apply a create/edit/delete to the live record (no commit).

    Args:
        data: full payload for create, changed fields for edit, ignored for delete
        actor_id: the user the change is attributed to (the requester for
            approved change requests)
        new_files: raw uploads to attach
        staged_attachments: descriptors uploaded earlier with a change request
        removed_attachments: entries to drop from the record's current list
            (approved change requests); everything else on the record is kept

    Raises:
        ValidationError, ResourceNotFound, StorageError

    A failed upload during an edit does not raise: the partial attachment
    list is saved and the error is returned on `upload_error`.
    """
    validate_action_type(action_type)
    policy = get_policy(resource_type)
    blob_store = blob_store or get_blob_store()
    data = clean_payload(resource_type, data)

    if action_type == ACTION_CREATE:
        return _apply_create(policy, data, actor_id, new_files, staged_attachments, blob_store)
    if action_type == ACTION_EDIT:
        return _apply_edit(
            policy, resource_id, data, actor_id, new_files, staged_attachments, removed_attachments, blob_store
        )
    if action_type == ACTION_DELETE:
        return _apply_delete(policy, resource_id, blob_store)
    raise ValidationError(f"Invalid action type '{action_type}'")


def _apply_create(policy, data, actor_id, new_files, staged_attachments, blob_store) -> AppliedMutation:
    patch = validate(policy.resource_type, data, partial=False)
    record = policy.model(**patch)
    record.created_by_user_id = actor_id
    _check_references(policy, record)

    uploaded = []
    if policy.attachment_field:
        result = attachment_service.reconcile(
            [],
            [],
            new_files,
            blob_store=blob_store,
            folder=policy.upload_folder,
            staged=staged_attachments,
            uploaded_by=actor_id,
        )
        uploaded = result.uploaded
        setattr(record, policy.attachment_field, result.final_list)

    _save_or_cleanup(policy.resource_type, record, uploaded, blob_store)

    applied = AppliedMutation(
        action_type=ACTION_CREATE,
        resource_type=policy.resource_type,
        resource_id=record.id,
        record=record.to_dict(),
        uploaded=uploaded,
    )
    _collect_reservations(policy, record, applied)
    return applied


def _apply_edit(
    policy, resource_id, data, actor_id, new_files, staged_attachments, removed_attachments, blob_store
) -> AppliedMutation:
    record = find_by_id(policy.resource_type, resource_id, for_update=True)
    keep_list = data.get(policy.attachment_field) if policy.attachment_field else None
    patch = validate(policy.resource_type, data, partial=True)

    previous_reservation_id = getattr(record, "reservation_id", None)
    for key, value in patch.items():
        setattr(record, key, value)
    _check_references(policy, record)

    uploaded = []
    failed_deletes = []
    upload_error = None
    removed_refs = {attachment_service.attachment_ref(a) for a in removed_attachments or []}
    attachments_touched = (
        keep_list is not None
        or removed_refs
        or staged_attachments
        or attachment_service.real_files(new_files)
    )
    if policy.attachment_field and attachments_touched:
        current = list(getattr(record, policy.attachment_field) or [])
        if keep_list is None:
            keep_list = [a for a in current if attachment_service.attachment_ref(a) not in removed_refs]
        keep_list = attachment_service.normalize_attachments(keep_list)
        try:
            result = attachment_service.reconcile(
                current,
                keep_list,
                new_files,
                blob_store=blob_store,
                folder=policy.upload_folder,
                staged=staged_attachments,
                uploaded_by=actor_id,
            )
        except StorageError as exc:
            if exc.partial is None:
                raise
            # Dropped blobs are already gone; the partial list must be stored
            result = exc.partial
            upload_error = exc
        uploaded = result.uploaded
        failed_deletes = result.failed_deletes
        setattr(record, policy.attachment_field, result.final_list)

    _save_or_cleanup(policy.resource_type, record, uploaded, blob_store)

    applied = AppliedMutation(
        action_type=ACTION_EDIT,
        resource_type=policy.resource_type,
        resource_id=record.id,
        record=record.to_dict(),
        uploaded=uploaded,
        failed_deletes=failed_deletes,
        upload_error=upload_error,
    )
    _collect_reservations(policy, record, applied)
    if previous_reservation_id is not None and policy.resource_type == "payment":
        applied.reservation_ids.add(previous_reservation_id)
    return applied


def _apply_delete(policy, resource_id, blob_store) -> AppliedMutation:
    record = find_by_id(policy.resource_type, resource_id, for_update=True)

    if policy.resource_type == "reservation" and find_payments_by_reservation(record.id):
        raise ValidationError("Reservation has payments; delete its payments first")

    applied = AppliedMutation(
        action_type=ACTION_DELETE,
        resource_type=policy.resource_type,
        resource_id=record.id,
        record=None,
    )
    # Captured before the row disappears
    if policy.resource_type == "payment":
        applied.reservation_ids.add(record.reservation_id)

    if policy.attachment_field:
        applied.failed_deletes = attachment_service.delete_blobs(
            getattr(record, policy.attachment_field), blob_store
        )

    applied.record = delete(policy.resource_type, record.id)
    return applied


def _save_or_cleanup(resource_type, record, uploaded, blob_store) -> None:
    try:
        save(resource_type, record)
    except StorageError:
        attachment_service.delete_blobs(uploaded, blob_store)
        raise


def _collect_reservations(policy, record, applied: AppliedMutation) -> None:
    if policy.resource_type == "payment":
        applied.reservation_ids.add(record.reservation_id)
    elif policy.resource_type == "reservation":
        applied.reservation_ids.add(record.id)


def _check_references(policy, record) -> None:
    if policy.resource_type == "payment":
        reservation = db.session.get(Reservation, record.reservation_id)
        if reservation is None:
            raise ResourceNotFound(f"Reservation {record.reservation_id} not found")
        if record.client_id is None:
            record.client_id = reservation.client_id
        elif db.session.get(Customer, record.client_id) is None:
            raise ResourceNotFound(f"Customer {record.client_id} not found")

    elif policy.resource_type == "reservation":
        if record.client_id is not None and db.session.get(Customer, record.client_id) is None:
            raise ResourceNotFound(f"Customer {record.client_id} not found")
        item_ids = [_coerce_id(item_id, "item_ids") for item_id in record.item_ids or []]
        if item_ids:
            found = {
                row.id for row in db.session.query(Product.id).filter(Product.id.in_(item_ids)).all()
            }
            missing = [str(i) for i in item_ids if i not in found]
            if missing:
                raise ResourceNotFound(f"Items not found: {', '.join(missing)}")
        record.item_ids = item_ids
        if record.pickup_date and record.return_date and record.return_date < record.pickup_date:
            raise ValidationError("return_date must be after pickup_date")


def _coerce_id(value, name: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer id")
    if isinstance(value, dict):
        value = value.get("id")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer id")


def commit_mutation(action_type: str, resource_type: str, resource_id=None, data=None, **kwargs) -> AppliedMutation:
    """
    apply_mutation() in its own transaction.

    On failure the session is rolled back and blobs uploaded by this call are
    deleted best-effort before the error propagates.

    An edit whose upload failed part-way is still committed with its partial
    attachment list; the error is left on `applied.upload_error` for the
    caller to raise once its own follow-up work is done.
    """
    blob_store = kwargs.pop("blob_store", None) or get_blob_store()
    applied = None
    try:
        applied = apply_mutation(action_type, resource_type, resource_id, data, blob_store=blob_store, **kwargs)
        db.session.commit()
    except StorageError as exc:
        db.session.rollback()
        partial = exc.partial
        if partial is not None:
            attachment_service.delete_blobs(getattr(partial, "uploaded", partial), blob_store)
        raise
    except Exception:
        db.session.rollback()
        if applied is not None:
            attachment_service.delete_blobs(applied.uploaded, blob_store)
        raise

    if applied.upload_error is not None:
        logger.warning(
            "Applied %s %s %s with a partial attachment list: %s",
            action_type,
            resource_type,
            applied.resource_id,
            applied.upload_error,
        )
    else:
        logger.info("Applied %s %s %s", action_type, resource_type, applied.resource_id)
    return applied
