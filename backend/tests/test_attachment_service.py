"""
Attachment reconciliation tests.

Verifies:
- Kept/deleted split by storage reference, not position
- Reconciling an unchanged list is a no-op
- Final lists never contain the same reference twice
- Failed blob deletes are skipped, not raised
- A failed upload surfaces StorageError with the partial result
- Local blob store round trip and path containment
"""

import pytest

from rentals.errors import StorageError, ValidationError
from rentals.services import attachment_service
from rentals.services.attachment_service import attachment_ref, reconcile
from rentals.services.blob_storage import LocalBlobStore


def _refs(attachments):
    return [attachment_ref(a) for a in attachments]


class TestPlanning:

    def test_plan_splits_by_reference(self, blob_store):
        a, b, c = blob_store.put("a.pdf"), blob_store.put("b.pdf"), blob_store.put("c.pdf")

        result = attachment_service.plan([a, b, c], [{"url": c["url"]}, {"link": a["url"]}])

        assert _refs(result.kept) == [a["url"], c["url"]]
        assert _refs(result.deleted) == [b["url"]]

    def test_unknown_keep_entries_ignored(self, blob_store):
        a = blob_store.put("a.pdf")
        result = attachment_service.plan([a], [a, {"url": "https://elsewhere/x.pdf"}])
        assert result.kept == [a]
        assert result.deleted == []

    def test_has_changes(self, blob_store, upload):
        a, b = blob_store.put("a.pdf"), blob_store.put("b.pdf")
        assert not attachment_service.has_changes([a, b], [b, a])
        assert attachment_service.has_changes([a, b], [a])
        assert attachment_service.has_changes([a], [a], [upload("new.png")])

    def test_normalize_maps_link_alias(self):
        normalized = attachment_service.normalize_attachments([{"name": "x", "link": "https://b/x"}, "https://b/x"])
        assert normalized == [{"name": "x", "url": "https://b/x"}]

    def test_normalize_rejects_entries_without_reference(self):
        with pytest.raises(ValidationError):
            attachment_service.normalize_attachments([{"name": "no-url"}])

    def test_file_types(self):
        assert attachment_service.get_file_type("scan.PDF") == "pdf"
        assert attachment_service.get_file_type("photo.jpeg") == "image"
        assert attachment_service.get_file_type("contract.docx") == "document"
        assert attachment_service.get_file_type("archive.zip") == "other"
        assert attachment_service.get_file_type(None) == "other"


class TestReconcile:

    def test_unchanged_list_is_noop(self, blob_store):
        a, b = blob_store.put("a.pdf"), blob_store.put("b.pdf")

        result = reconcile([a, b], [a, b], [], blob_store=blob_store, folder="uploads/costs")

        assert result.deleted == []
        assert _refs(result.final_list) == [a["url"], b["url"]]
        assert blob_store.deleted == []

    def test_removed_entries_deleted_and_uploads_appended(self, blob_store, upload):
        a, b = blob_store.put("a.pdf"), blob_store.put("b.pdf")

        result = reconcile(
            [a, b], [b], [upload("receipt.png"), upload("invoice.pdf")],
            blob_store=blob_store, folder="uploads/payment", uploaded_by=7,
        )

        assert blob_store.deleted == [a["url"]]
        assert _refs(result.deleted) == [a["url"]]
        assert [x["name"] for x in result.final_list] == ["b.pdf", "receipt.png", "invoice.pdf"]
        assert result.final_list[1]["type"] == "image"
        assert result.final_list[1]["uploadedBy"] == 7
        assert result.final_list[1]["url"].startswith("https://blobs.test/uploads/payment/")

    def test_final_list_has_no_duplicates(self, blob_store):
        a = blob_store.put("a.pdf")
        staged = [dict(a)]

        result = reconcile([a, dict(a)], [a, a], [], blob_store=blob_store, folder="f", staged=staged)

        assert _refs(result.final_list) == [a["url"]]

    def test_reconciling_twice_is_idempotent(self, blob_store, upload):
        a, b = blob_store.put("a.pdf"), blob_store.put("b.pdf")
        first = reconcile([a, b], [a], [upload("n.txt")], blob_store=blob_store, folder="f")
        deleted_after_first = list(blob_store.deleted)

        second = reconcile(first.final_list, first.final_list, [], blob_store=blob_store, folder="f")

        assert second.final_list == first.final_list
        assert second.deleted == []
        assert blob_store.deleted == deleted_after_first

    def test_failed_delete_is_skipped(self, blob_store):
        a, b = blob_store.put("a.pdf"), blob_store.put("b.pdf")
        blob_store.fail_deletes.add(a["url"])

        result = reconcile([a, b], [], [], blob_store=blob_store, folder="f")

        assert result.final_list == []
        assert _refs(result.failed_deletes) == [a["url"]]
        assert blob_store.deleted == [b["url"]]

    def test_upload_failure_surfaces_partial_result(self, blob_store, upload):
        a = blob_store.put("a.pdf")
        blob_store.fail_uploads.add("broken.pdf")

        with pytest.raises(StorageError) as excinfo:
            reconcile(
                [a], [a], [upload("ok.pdf"), upload("broken.pdf"), upload("never.pdf")],
                blob_store=blob_store, folder="f",
            )

        partial = excinfo.value.partial
        assert [x["name"] for x in partial.uploaded] == ["ok.pdf"]
        assert [x["name"] for x in partial.final_list] == ["a.pdf", "ok.pdf"]
        assert not any("never.pdf" in url for url in blob_store.blobs)

    def test_upload_failure_still_deletes_dropped_entries(self, blob_store, upload):
        old = blob_store.put("old-id.pdf")
        blob_store.fail_uploads.add("bad.pdf")

        with pytest.raises(StorageError) as excinfo:
            reconcile([old], [], [upload("good.pdf"), upload("bad.pdf")], blob_store=blob_store, folder="f")

        partial = excinfo.value.partial
        assert _refs(partial.deleted) == [old["url"]]
        assert blob_store.deleted == [old["url"]]
        # The list to persist no longer points at the deleted blob
        assert [x["name"] for x in partial.final_list] == ["good.pdf"]
        assert partial.final_list[0]["url"] in blob_store.blobs

    def test_empty_file_parts_ignored(self, blob_store, upload):
        result = reconcile([], [], [upload(""), None], blob_store=blob_store, folder="f")
        assert result.final_list == []


class TestLocalBlobStore:

    def test_upload_and_delete_round_trip(self, tmp_path, upload):
        store = LocalBlobStore(root=str(tmp_path), base_url="/files")

        stored = store.upload(upload("My Receipt.pdf", b"12345"), "uploads/payment")

        assert stored["url"].startswith("/files/uploads/payment/")
        assert stored["url"].endswith("My_Receipt.pdf")
        assert stored["size"] == 5
        path = tmp_path / stored["pathname"]
        assert path.read_bytes() == b"12345"

        store.delete(stored["url"])
        assert not path.exists()

        # Deleting again is harmless
        store.delete(stored["pathname"])

    def test_absolute_urls_map_to_pathnames(self, tmp_path):
        store = LocalBlobStore(root=str(tmp_path), base_url="/files")
        assert store.pathname_for("https://rentals.example/files/uploads/costs/x.pdf") == "uploads/costs/x.pdf"
        assert store.pathname_for("uploads/costs/x.pdf") == "uploads/costs/x.pdf"

    def test_paths_outside_root_rejected(self, tmp_path):
        store = LocalBlobStore(root=str(tmp_path / "blobs"), base_url="/files")
        with pytest.raises(StorageError):
            store.delete("../outside.txt")
