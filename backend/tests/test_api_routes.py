"""
HTTP API tests.

Verifies:
- Unauthenticated requests return 401
- Admin/manager mutations apply directly; employee mutations return 202
- Review endpoints enforce roles and single resolution
- Payment endpoints reconcile reservations
- Multipart uploads attach files
"""

import io
import json

import pytest

from rentals.extensions import db
from rentals.models import ApprovalRequest, Customer, Reservation


NEW_CUSTOMER = {"first_name": "Salma", "last_name": "Idrissi", "phone": "0622222222"}


# =============================================================================
# AUTHENTICATION
# =============================================================================


class TestUnauthenticatedAccess:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/customers"),
            ("POST", "/api/customers"),
            ("PUT", "/api/items/1"),
            ("DELETE", "/api/reservations/1"),
            ("POST", "/api/payments"),
            ("GET", "/api/approvals"),
            ("GET", "/api/approvals/count"),
            ("PUT", "/api/approvals/1/review"),
            ("POST", "/api/gate/evaluate"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_invalid_token(self, client, db_session):
        resp = client.get("/api/customers", headers={"Authorization": "Bearer not-a-token"})
        assert resp.status_code == 401

    def test_health_is_public(self, client, db_session, blob_store):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json["checks"]["database"]["status"] == "healthy"


# =============================================================================
# GATED MUTATIONS
# =============================================================================


class TestGatedMutations:

    def test_gate_evaluate(self, client, employee_headers, manager_headers):
        body = {"action_type": "edit", "resource_type": "reservation"}

        resp = client.post("/api/gate/evaluate", json=body, headers=employee_headers)
        assert resp.status_code == 200
        assert resp.json["requires_approval"] is True

        resp = client.post("/api/gate/evaluate", json=body, headers=manager_headers)
        assert resp.json["requires_approval"] is False

        resp = client.post("/api/gate/evaluate", json={"action_type": "x", "resource_type": "customer"}, headers=manager_headers)
        assert resp.status_code == 400
        assert resp.json["code"] == "validation_error"

    def test_admin_create_applies(self, client, admin_headers, blob_store):
        resp = client.post("/api/customers", json=NEW_CUSTOMER, headers=admin_headers)

        assert resp.status_code == 201
        assert resp.json["status"] == "applied"
        assert resp.json["record"]["first_name"] == "Salma"
        assert db.session.query(Customer).count() == 1

    def test_employee_create_deferred(self, client, employee_headers, blob_store):
        resp = client.post("/api/customers", json={**NEW_CUSTOMER, "reason": "Walk-in"}, headers=employee_headers)

        assert resp.status_code == 202
        assert resp.json["status"] == "pending_approval"
        assert resp.json["approval"]["action_type"] == "create"
        assert resp.json["approval"]["reason"] == "Walk-in"
        assert db.session.query(Customer).count() == 0

    def test_employee_edit_without_changes(self, client, employee_headers, customer, blob_store):
        resp = client.put(f"/api/customers/{customer.id}", json=customer.to_dict(), headers=employee_headers)

        assert resp.status_code == 400
        assert resp.json["code"] == "no_changes"

    def test_manager_edit_applies(self, client, manager_headers, customer, blob_store):
        resp = client.put(f"/api/customers/{customer.id}", json={"wedding_city": "Tangier"}, headers=manager_headers)

        assert resp.status_code == 200
        assert resp.json["record"]["wedding_city"] == "Tangier"

    def test_validation_errors(self, client, admin_headers, customer, blob_store):
        resp = client.put(f"/api/customers/{customer.id}", json={"type": "VIP"}, headers=admin_headers)
        assert resp.status_code == 400

        resp = client.put(f"/api/customers/{customer.id}", json={"favourite_colour": "red"}, headers=admin_headers)
        assert resp.status_code == 400

    def test_missing_record(self, client, admin_headers, blob_store):
        resp = client.put("/api/costs/999", json={"amount": 5}, headers=admin_headers)
        assert resp.status_code == 404
        assert resp.json["code"] == "not_found"

    def test_unknown_collection(self, client, admin_headers):
        resp = client.get("/api/invoices", headers=admin_headers)
        assert resp.status_code == 404

    def test_employee_delete_deferred(self, client, employee_headers, reservation, blob_store):
        resp = client.delete(f"/api/reservations/{reservation.id}", headers=employee_headers)

        assert resp.status_code == 202
        assert resp.json["approval"]["resource_id"] == reservation.id
        assert db.session.get(Reservation, reservation.id) is not None

    def test_products_alias(self, client, admin_headers, blob_store):
        resp = client.post("/api/products", json={"name": "Veil", "rental_cost": "50"}, headers=admin_headers)
        assert resp.status_code == 201
        assert resp.json["record"]["rental_cost"] == 50

        resp = client.get("/api/items", headers=admin_headers)
        assert resp.json["total"] == 1

    def test_multipart_create_with_files(self, client, admin_headers, blob_store):
        data = {
            "data": json.dumps({"name": "Hall rent", "amount": 1500, "category": "Venue"}),
            "files": [(io.BytesIO(b"%PDF"), "invoice.pdf")],
        }
        resp = client.post("/api/costs", data=data, headers=admin_headers, content_type="multipart/form-data")

        assert resp.status_code == 201
        attachments = resp.json["record"]["attachments"]
        assert [a["name"] for a in attachments] == ["invoice.pdf"]
        assert attachments[0]["type"] == "pdf"

    def test_multipart_keeps_existing_attachments(self, client, admin_headers, customer, blob_store):
        kept, dropped = blob_store.put("keep.pdf"), blob_store.put("drop.pdf")
        customer.attachments = [kept, dropped]
        db.session.commit()

        data = {
            "data": json.dumps({"phone": "0699999999"}),
            "existing_attachments": json.dumps([kept]),
            "files": [(io.BytesIO(b"img"), "new.png")],
        }
        resp = client.put(
            f"/api/customers/{customer.id}", data=data, headers=admin_headers, content_type="multipart/form-data"
        )

        assert resp.status_code == 200
        assert [a["name"] for a in resp.json["record"]["attachments"]] == ["keep.pdf", "new.png"]
        assert blob_store.deleted == [dropped["url"]]

    def test_upload_failure_returns_502_and_rolls_back(self, client, admin_headers, blob_store):
        blob_store.fail_uploads.add("bad.pdf")
        data = {
            "data": json.dumps({"name": "Flowers", "amount": 200}),
            "files": [(io.BytesIO(b"1"), "good.pdf"), (io.BytesIO(b"2"), "bad.pdf")],
        }
        resp = client.post("/api/costs", data=data, headers=admin_headers, content_type="multipart/form-data")

        assert resp.status_code == 502
        assert resp.json["code"] == "storage_error"
        assert client.get("/api/costs", headers=admin_headers).json["total"] == 0
        # The file uploaded before the failure is cleaned up
        assert blob_store.blobs == {}

    def test_edit_upload_failure_keeps_partial_attachment_list(self, client, admin_headers, customer, blob_store):
        old = blob_store.put("old-id.pdf")
        customer.attachments = [old]
        db.session.commit()
        blob_store.fail_uploads.add("bad.pdf")

        data = {
            "data": json.dumps({"phone": "0699999999"}),
            "existing_attachments": json.dumps([]),
            "files": [(io.BytesIO(b"1"), "good.pdf"), (io.BytesIO(b"2"), "bad.pdf")],
        }
        resp = client.put(
            f"/api/customers/{customer.id}", data=data, headers=admin_headers, content_type="multipart/form-data"
        )

        assert resp.status_code == 502
        assert resp.json["code"] == "storage_error"
        db.session.expire_all()
        record = db.session.get(Customer, customer.id)
        # The dropped file is gone and no longer referenced; the good upload is stored
        assert blob_store.deleted == [old["url"]]
        assert [a["name"] for a in record.attachments] == ["good.pdf"]
        assert record.attachments[0]["url"] in blob_store.blobs
        assert record.phone == "0699999999"


# =============================================================================
# APPROVAL ENDPOINTS
# =============================================================================


class TestApprovalEndpoints:

    def _submit_edit(self, client, headers, customer):
        return client.put(
            f"/api/customers/{customer.id}",
            json={**customer.to_dict(), "phone": "0611111111"},
            headers=headers,
        )

    def test_review_flow(self, client, employee_headers, manager_headers, admin_headers, customer, blob_store):
        submitted = self._submit_edit(client, employee_headers, customer)
        approval_id = submitted.json["approval"]["id"]

        assert client.get("/api/approvals/count", headers=manager_headers).json == {"count": 1}
        assert client.get("/api/approvals/count", headers=employee_headers).json == {"count": 0}

        resp = client.put(
            f"/api/approvals/{approval_id}/review",
            json={"action": "approve", "comment": "Verified by phone"},
            headers=manager_headers,
        )
        assert resp.status_code == 200
        assert resp.json["approval"]["status"] == "approved"
        assert resp.json["applied"]["phone"] == "0611111111"

        resp = client.put(f"/api/approvals/{approval_id}/review", json={"action": "reject"}, headers=admin_headers)
        assert resp.status_code == 409
        assert resp.json["error"] == "Approval request has already been approved"

        assert client.get("/api/approvals/count", headers=manager_headers).json == {"count": 0}

    def test_employee_cannot_review_or_list(self, client, employee_headers, customer, blob_store):
        approval_id = self._submit_edit(client, employee_headers, customer).json["approval"]["id"]

        resp = client.put(f"/api/approvals/{approval_id}/review", json={"action": "approve"}, headers=employee_headers)
        assert resp.status_code == 403

        assert client.get("/api/approvals", headers=employee_headers).status_code == 403

        mine = client.get("/api/approvals/my-requests", headers=employee_headers)
        assert [a["id"] for a in mine.json["approvals"]] == [approval_id]

    def test_explicit_submission(self, client, employee_headers, customer, blob_store):
        resp = client.post(
            "/api/approvals",
            json={
                "action_type": "edit",
                "resource_type": "customer",
                "resource_id": customer.id,
                "new_data": {"wedding_location": "Riad Zitoun"},
                "reason": "Venue changed",
            },
            headers=employee_headers,
        )

        assert resp.status_code == 201
        assert resp.json["approval"]["new_data"] == {"wedding_location": "Riad Zitoun"}
        assert "1 field(s) will be updated" in resp.json["message"]

    def test_requester_and_reviewer_can_view(self, client, employee_headers, manager_headers, customer, blob_store):
        approval_id = self._submit_edit(client, employee_headers, customer).json["approval"]["id"]

        assert client.get(f"/api/approvals/{approval_id}", headers=employee_headers).status_code == 200
        assert client.get(f"/api/approvals/{approval_id}", headers=manager_headers).status_code == 200
        assert client.get("/api/approvals/999", headers=manager_headers).status_code == 404

    def test_delete_admin_only(self, client, employee_headers, manager_headers, admin_headers, customer, blob_store):
        approval_id = self._submit_edit(client, employee_headers, customer).json["approval"]["id"]

        assert client.delete(f"/api/approvals/{approval_id}", headers=manager_headers).status_code == 403
        assert client.delete(f"/api/approvals/{approval_id}", headers=admin_headers).status_code == 200
        assert db.session.get(ApprovalRequest, approval_id) is None


# =============================================================================
# PAYMENT ENDPOINTS
# =============================================================================


class TestPaymentEndpoints:

    def test_payment_create_reconciles(self, client, admin_headers, reservation, blob_store):
        resp = client.post(
            "/api/payments",
            json={"reservation_id": reservation.id, "amount": 300, "payment_method": "Cash"},
            headers=admin_headers,
        )
        assert resp.status_code == 201

        summary = client.get(f"/api/payments/reservations/{reservation.id}/summary", headers=admin_headers).json
        assert summary["stored"] == {"remaining_balance": 700, "payment_status": "Partially Paid"}
        assert summary["in_sync"] is True

    def test_payment_delete_reconciles(self, client, admin_headers, reservation, blob_store):
        created = client.post(
            "/api/payments", json={"reservation_id": reservation.id, "amount": 1000}, headers=admin_headers
        ).json["record"]

        resp = client.delete(f"/api/payments/{created['id']}", headers=admin_headers)
        assert resp.status_code == 200

        summary = client.get(f"/api/payments/reservations/{reservation.id}/summary", headers=admin_headers).json
        assert summary["stored"]["payment_status"] == "Not Paid"
        assert summary["payments"] == []

    def test_employee_payment_deferred(self, client, employee_headers, reservation, blob_store):
        resp = client.post(
            "/api/payments", json={"reservation_id": reservation.id, "amount": 300}, headers=employee_headers
        )
        assert resp.status_code == 202
        assert client.get("/api/payments", headers=employee_headers).json["payments"] == []

    def test_reconcile_endpoint_requires_reviewer(self, client, employee_headers, manager_headers, reservation):
        url = f"/api/payments/reservations/{reservation.id}/reconcile"

        assert client.post(url, headers=employee_headers).status_code == 403

        resp = client.post(url, headers=manager_headers)
        assert resp.status_code == 200
        assert resp.json["payment_status"] == "Not Paid"
        assert resp.json["remaining_balance"] == 1000

    def test_summary_for_missing_reservation(self, client, admin_headers):
        resp = client.get("/api/payments/reservations/999/summary", headers=admin_headers)
        assert resp.status_code == 404
