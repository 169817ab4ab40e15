# Overview: Blob storage collaborator for attachment uploads and deletes.

"""
Blob Storage

WHY: Attachments live outside the database. Records only keep a storage
reference (`url`), so the store must accept either the public URL or the
storage pathname when deleting.

The application uses LocalBlobStore (files under UPLOAD_FOLDER, served by
the system blueprint). Any object exposing `upload(file, folder)` and
`delete(url_or_pathname)` can be installed in `app.extensions["blob_store"]`.
"""

from __future__ import annotations

import logging
import os
import secrets
import time
from urllib.parse import urlparse

from flask import Flask, current_app
from werkzeug.utils import secure_filename

from ..errors import StorageError

logger = logging.getLogger(__name__)


UPLOAD_FOLDERS = {
    "customer": "uploads/customers/documents",
    "item": "uploads/products/images",
    "payment": "uploads/payment",
    "cost": "uploads/costs",
    "reservation": "uploads/reservations",
}

# Files attached to a change request wait here until the request is reviewed
APPROVAL_FOLDERS = {
    "customer": "approvals/customers/documents",
    "item": "approvals/products/images",
    "payment": "approvals/payments",
    "cost": "approvals/costs",
    "reservation": "approvals/reservations",
}


class BlobStore:
    """Interface for blob storage backends."""

    def upload(self, file, folder: str) -> dict:
        """Store `file` under `folder`; return {"url", "pathname", "size"}."""
        raise NotImplementedError

    def delete(self, url_or_pathname: str) -> None:
        raise NotImplementedError


class LocalBlobStore(BlobStore):
    def __init__(self, root: str, base_url: str = "/files"):
        self.root = os.path.abspath(root)
        self.base_url = base_url.rstrip("/")

    def upload(self, file, folder: str) -> dict:
        original_name = getattr(file, "filename", None) or "file"
        filename = f"{int(time.time() * 1000)}-{secrets.token_hex(4)}-{secure_filename(original_name) or 'file'}"
        pathname = f"{folder.strip('/')}/{filename}"
        target = self._resolve(pathname)

        try:
            os.makedirs(os.path.dirname(target), exist_ok=True)
            file.save(target)
            size = os.path.getsize(target)
        except OSError as exc:
            logger.error("Upload failed for %s: %s", original_name, exc)
            raise StorageError(f"Failed to upload file: {original_name}") from exc

        logger.info("Uploaded %s (%d bytes) to %s", original_name, size, pathname)
        return {"url": f"{self.base_url}/{pathname}", "pathname": pathname, "size": size}

    def delete(self, url_or_pathname: str) -> None:
        pathname = self.pathname_for(url_or_pathname)
        target = self._resolve(pathname)

        if not os.path.exists(target):
            logger.debug("Blob already absent: %s", pathname)
            return

        try:
            os.remove(target)
        except OSError as exc:
            raise StorageError(f"Failed to delete file: {pathname}") from exc
        logger.info("Deleted blob %s", pathname)

    def pathname_for(self, url_or_pathname: str) -> str:
        """Map a stored reference (public URL or pathname) to a storage pathname."""
        if not url_or_pathname:
            raise StorageError("Empty storage reference")
        path = urlparse(url_or_pathname).path if "://" in url_or_pathname else url_or_pathname
        if self.base_url and path.startswith(self.base_url + "/"):
            path = path[len(self.base_url) + 1:]
        return path.lstrip("/")

    def absolute_path(self, pathname: str) -> str:
        return self._resolve(pathname)

    def _resolve(self, pathname: str) -> str:
        target = os.path.abspath(os.path.join(self.root, pathname))
        if os.path.commonpath([self.root, target]) != self.root:
            raise StorageError(f"Storage reference escapes the upload root: {pathname}")
        return target


def init_blob_store(app: Flask) -> None:
    """Install the local store unless one was configured already (tests)."""
    if "blob_store" in app.extensions:
        return
    root = app.config["UPLOAD_FOLDER"]
    if not os.path.isabs(root):
        root = os.path.join(app.instance_path, root)
    app.extensions["blob_store"] = LocalBlobStore(root=root, base_url=app.config["BLOB_BASE_URL"])


def get_blob_store() -> BlobStore:
    return current_app.extensions["blob_store"]
