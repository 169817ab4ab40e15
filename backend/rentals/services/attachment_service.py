# Overview: Service-layer operations for attachments; reconciles attachment lists with blob storage.

"""
Attachment Reconciler

WHY: Records keep their files as a list of descriptors pointing into blob
storage. Edits submit the descriptors the client wants to keep plus any new
uploads; the difference against the stored list decides what to delete.

RULES:
- Identity is the storage reference (`url`, legacy alias `link`), never the
  position in the list
- final list = kept existing (stored order) + newly uploaded (upload order)
- No storage reference appears twice in a final list
- Blob deletes are best-effort: a failed delete is logged and skipped
- Upload failures are NOT swallowed: the batch stops and StorageError is
  raised with the partial result attached (`exc.partial`)
- Deletes are issued before the caller persists the new list, so a stored
  reference never outlives a delete attempt
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from ..errors import StorageError, ValidationError
from ..time_utils import to_utc_z, utcnow

logger = logging.getLogger(__name__)


FILE_TYPE_EXTENSIONS = {
    "image": {"jpg", "jpeg", "png", "gif", "bmp", "webp", "svg", "ico", "heic"},
    "pdf": {"pdf"},
    "document": {"doc", "docx", "rtf", "odt", "xls", "xlsx", "ods", "ppt", "pptx"},
    "text": {"txt", "csv", "md"},
    "video": {"mp4", "avi", "mov", "wmv", "flv", "webm", "mkv"},
    "audio": {"mp3", "wav", "aac", "ogg", "wma", "m4a"},
}


@dataclass
class AttachmentPlan:
    kept: list[dict]
    deleted: list[dict]


@dataclass
class ReconcileResult:
    deleted: list[dict]
    final_list: list[dict]
    uploaded: list[dict] = field(default_factory=list)
    failed_deletes: list[dict] = field(default_factory=list)


def get_file_type(filename: str | None) -> str:
    """Coarse category from the filename extension."""
    _, ext = os.path.splitext(filename or "")
    ext = ext.lstrip(".").lower()
    for file_type, extensions in FILE_TYPE_EXTENSIONS.items():
        if ext in extensions:
            return file_type
    return "other"


def attachment_ref(attachment) -> str | None:
    """Storage reference of an attachment descriptor (or a bare reference string)."""
    if isinstance(attachment, str):
        return attachment or None
    if not isinstance(attachment, dict):
        return None
    return attachment.get("url") or attachment.get("link") or attachment.get("pathname") or None


def create_attachment(name: str, size: int, url: str, uploaded_by: int | None = None) -> dict:
    attachment = {
        "name": name,
        "url": url,
        "size": int(size or 0),
        "type": get_file_type(name),
        "uploadedAt": to_utc_z(utcnow()),
    }
    if uploaded_by is not None:
        attachment["uploadedBy"] = uploaded_by
    return attachment


def normalize_attachments(items) -> list[dict]:
    """
    Validate a client-submitted descriptor list.

    Accepts dicts carrying `url` or `link`, or bare reference strings.
    Duplicates collapse to their first occurrence.
    """
    if items is None:
        return []
    if not isinstance(items, list):
        raise ValidationError("attachments must be a list")

    normalized = []
    for item in items:
        ref = attachment_ref(item)
        if not ref:
            raise ValidationError("Each attachment needs a url")
        if isinstance(item, dict):
            descriptor = {k: v for k, v in item.items() if k != "link"}
            descriptor["url"] = ref
        else:
            descriptor = {"url": ref}
        normalized.append(descriptor)
    return dedupe(normalized)


def dedupe(attachments) -> list[dict]:
    seen = set()
    unique = []
    for attachment in attachments or []:
        ref = attachment_ref(attachment)
        if ref is None or ref in seen:
            continue
        seen.add(ref)
        unique.append(attachment)
    return unique


def plan(current_list, submitted_keep_list) -> AttachmentPlan:
    """
    Split the stored list into kept and deleted entries. Pure; no I/O.

    Keep-list entries that are not stored on the record are ignored.
    """
    keep_refs = {attachment_ref(a) for a in (submitted_keep_list or [])}
    kept = []
    deleted = []
    for attachment in dedupe(current_list):
        if attachment_ref(attachment) in keep_refs:
            kept.append(attachment)
        else:
            deleted.append(attachment)
    return AttachmentPlan(kept=kept, deleted=deleted)


def has_changes(current_list, submitted_keep_list, new_files=()) -> bool:
    """True when the keep list drops a stored reference or files are added."""
    if real_files(new_files):
        return True
    current_refs = {attachment_ref(a) for a in (current_list or [])}
    keep_refs = {attachment_ref(a) for a in (submitted_keep_list or [])}
    return current_refs != keep_refs


def delete_blobs(attachments, blob_store) -> list[dict]:
    """
    Best-effort delete of each attachment's blob.

    Returns the attachments whose delete failed (already logged).
    """
    failed = []
    for attachment in attachments or []:
        ref = attachment_ref(attachment)
        if not ref:
            continue
        try:
            blob_store.delete(ref)
        except StorageError as exc:
            logger.warning("Failed to delete attachment %s: %s", ref, exc)
            failed.append(attachment)
    return failed


def upload_files(files, blob_store, folder: str, uploaded_by: int | None = None) -> list[dict]:
    """
    Upload files in order and return their descriptors.

    On the first failure, raises StorageError whose `partial` holds the
    descriptors uploaded before it.
    """
    uploaded = []
    for file in real_files(files):
        try:
            stored = blob_store.upload(file, folder)
        except StorageError as exc:
            raise StorageError(exc.message, partial=uploaded, file=file.filename) from exc
        size = stored.get("size")
        if size is None:
            size = getattr(file, "content_length", 0) or 0
        uploaded.append(create_attachment(file.filename, size, stored["url"], uploaded_by))
    return uploaded


def reconcile(
    current_list,
    submitted_keep_list,
    newly_uploaded_files=(),
    *,
    blob_store,
    folder: str,
    staged=(),
    uploaded_by: int | None = None,
) -> ReconcileResult:
    """
    Reconcile a record's attachment list.

    Args:
        current_list: descriptors stored on the record
        submitted_keep_list: descriptors the client wants to keep
        newly_uploaded_files: raw uploads (werkzeug FileStorage-like)
        blob_store: storage collaborator
        folder: destination folder for new uploads
        staged: descriptors already uploaded elsewhere (approved change
            requests); appended like new uploads

    Returns:
        ReconcileResult(deleted, final_list, uploaded, failed_deletes)

    Raises:
        StorageError: an upload failed; `exc.partial` is the ReconcileResult
            the caller must persist. Its final_list holds the kept entries
            plus every file uploaded before the failure, and the dropped
            entries have already had their deletes issued.

    Uploads run before deletes, so a delete is only issued once the list
    that will be stored without that reference is settled.
    """
    result = plan(current_list, submitted_keep_list)
    staged = [dict(a) for a in staged or []]

    upload_error = None
    try:
        uploaded = upload_files(newly_uploaded_files, blob_store, folder, uploaded_by)
    except StorageError as exc:
        upload_error = exc
        uploaded = list(exc.partial or [])

    reconciled = ReconcileResult(
        deleted=result.deleted,
        final_list=dedupe(result.kept + staged + uploaded),
        uploaded=uploaded,
        failed_deletes=delete_blobs(result.deleted, blob_store),
    )
    if upload_error is not None:
        raise StorageError(upload_error.message, partial=reconciled, **upload_error.details) from upload_error
    return reconciled


def real_files(files) -> list:
    # Browsers submit an empty part when no file was chosen
    return [f for f in (files or []) if f is not None and getattr(f, "filename", None)]
