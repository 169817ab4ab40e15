"""
Approval request lifecycle tests.

Verifies:
- Edit requests store only the changed fields
- A request is resolved exactly once
- A failed apply leaves the request pending
- Approved payment requests reconcile their reservation
- Files attached to requests are staged, applied on approval and removed on rejection
"""

import pytest
from sqlalchemy import update
from sqlalchemy.orm.attributes import set_committed_value

from rentals.errors import (
    AlreadyReviewed,
    Forbidden,
    NoChangesDetected,
    ResourceNotFound,
    ValidationError,
)
from rentals.extensions import db
from rentals.models import ApprovalRequest, Customer, Payment, Reservation
from rentals.services import approval_service, mutation_service
from rentals.time_utils import utcnow


def _customer_form(customer, **changes):
    """What the edit form sends back: the full record with some fields changed."""
    form = customer.to_dict()
    form.update(changes)
    return form


# =============================================================================
# SUBMISSION
# =============================================================================


class TestSubmit:

    def test_edit_stores_only_changed_fields(self, customer, employee, blob_store):
        approval = approval_service.submit_approval_request(
            employee, "edit", "customer", customer.id,
            reason="New phone number",
            proposed_data=_customer_form(customer, phone="0611111111"),
        )

        assert approval["status"] == "pending"
        assert approval["new_data"] == {"phone": "0611111111"}
        assert approval["changed_fields"] == ["phone"]
        assert approval["original_data"]["phone"] == "0600000000"
        assert approval["requested_by"] == {"id": employee.id, "name": "employee", "email": "employee@rentals.test"}
        assert approval["reason"] == "New phone number"

        # The live record is untouched
        db.session.expire_all()
        assert db.session.get(Customer, customer.id).phone == "0600000000"

    def test_edit_without_changes_rejected(self, customer, employee, blob_store):
        with pytest.raises(NoChangesDetected):
            approval_service.submit_approval_request(
                employee, "edit", "customer", customer.id,
                proposed_data=_customer_form(customer, phone=" 0600000000 "),
            )
        assert db.session.query(ApprovalRequest).count() == 0

    def test_edit_requires_resource_id(self, employee, blob_store):
        with pytest.raises(ValidationError):
            approval_service.submit_approval_request(employee, "edit", "customer", proposed_data={"phone": "1"})

    def test_edit_of_missing_resource(self, employee, blob_store):
        with pytest.raises(ResourceNotFound):
            approval_service.submit_approval_request(employee, "delete", "customer", 4242)

    def test_create_requires_valid_payload(self, employee, blob_store):
        with pytest.raises(ValidationError):
            approval_service.submit_approval_request(employee, "create", "customer", proposed_data={})
        with pytest.raises(ValidationError):
            approval_service.submit_approval_request(employee, "create", "customer", proposed_data={"first_name": "Only"})

    def test_unknown_types_rejected(self, employee, blob_store):
        with pytest.raises(ValidationError):
            approval_service.submit_approval_request(employee, "archive", "customer", 1)
        with pytest.raises(ValidationError):
            approval_service.submit_approval_request(employee, "create", "invoice", proposed_data={"x": 1})

    def test_files_are_staged_in_approvals_folder(self, customer, employee, blob_store, upload):
        approval = approval_service.submit_approval_request(
            employee, "edit", "customer", customer.id,
            proposed_data=_customer_form(customer),
            new_files=[upload("id-card.jpg")],
        )

        stored = db.session.get(ApprovalRequest, approval["id"])
        assert len(stored.staged_attachments) == 1
        assert "/approvals/customers/documents/" in stored.staged_attachments[0]["url"]


# =============================================================================
# REVIEW
# =============================================================================


class TestResolve:

    def _edit_request(self, customer, employee, **changes):
        return approval_service.submit_approval_request(
            employee, "edit", "customer", customer.id,
            proposed_data=_customer_form(customer, **changes),
        )

    def test_approve_applies_changes(self, customer, employee, manager, blob_store):
        approval = self._edit_request(customer, employee, phone="0611111111", wedding_city="Fes")

        outcome = approval_service.resolve_approval_request(approval["id"], "approve", manager, comment="ok")

        assert outcome.approval["status"] == "approved"
        assert outcome.approval["reviewed_by"]["id"] == manager.id
        assert outcome.approval["review_comment"] == "ok"
        assert outcome.approval["reviewed_at"] is not None
        db.session.expire_all()
        record = db.session.get(Customer, customer.id)
        assert record.phone == "0611111111"
        assert record.wedding_city == "Fes"
        assert record.first_name == "Amina"

    def test_reject_leaves_record_untouched(self, customer, employee, admin, blob_store):
        approval = self._edit_request(customer, employee, phone="0611111111")

        outcome = approval_service.resolve_approval_request(approval["id"], "reject", admin, comment="no")

        assert outcome.approval["status"] == "rejected"
        assert outcome.applied is None
        db.session.expire_all()
        assert db.session.get(Customer, customer.id).phone == "0600000000"

    def test_second_review_fails_with_approved_message(self, customer, employee, manager, admin, blob_store):
        approval = self._edit_request(customer, employee, phone="0611111111")
        approval_service.resolve_approval_request(approval["id"], "approve", manager)

        with pytest.raises(AlreadyReviewed) as excinfo:
            approval_service.resolve_approval_request(approval["id"], "approve", admin)
        assert excinfo.value.message == "Approval request has already been approved"
        assert excinfo.value.status_code == 409

    def test_second_review_fails_with_rejected_message(self, customer, employee, manager, blob_store):
        approval = self._edit_request(customer, employee, phone="0611111111")
        approval_service.resolve_approval_request(approval["id"], "reject", manager)

        with pytest.raises(AlreadyReviewed) as excinfo:
            approval_service.resolve_approval_request(approval["id"], "approve", manager)
        assert excinfo.value.message == "Approval request has already been rejected"

        db.session.expire_all()
        assert db.session.get(Customer, customer.id).phone == "0600000000"

    def test_concurrent_review_loses_guarded_update(self, customer, employee, manager, admin, blob_store, monkeypatch):
        approval = self._edit_request(customer, employee, phone="0611111111")
        load = approval_service._get_or_404

        def load_then_lose_race(request_id):
            request = load(request_id)
            # Another reviewer approves after this reviewer read the request
            db.session.execute(
                update(ApprovalRequest)
                .where(ApprovalRequest.id == request_id)
                .values(status="approved", reviewed_by_user_id=admin.id, reviewed_at=utcnow())
            )
            db.session.commit()
            db.session.refresh(request)
            set_committed_value(request, "status", "pending")
            return request

        monkeypatch.setattr(approval_service, "_get_or_404", load_then_lose_race)

        with pytest.raises(AlreadyReviewed) as excinfo:
            approval_service.resolve_approval_request(approval["id"], "approve", manager)
        assert excinfo.value.message == "Approval request has already been approved"

        db.session.expire_all()
        stored = db.session.get(ApprovalRequest, approval["id"])
        assert stored.reviewed_by_user_id == admin.id
        assert db.session.get(Customer, customer.id).phone == "0600000000"

    def test_employee_cannot_review(self, customer, employee, blob_store):
        approval = self._edit_request(customer, employee, phone="0611111111")
        with pytest.raises(Forbidden):
            approval_service.resolve_approval_request(approval["id"], "approve", employee)

    def test_invalid_decision(self, customer, employee, manager, blob_store):
        approval = self._edit_request(customer, employee, phone="0611111111")
        with pytest.raises(ValidationError):
            approval_service.resolve_approval_request(approval["id"], "maybe", manager)

    def test_unknown_request(self, db_session, manager, blob_store):
        with pytest.raises(ResourceNotFound):
            approval_service.resolve_approval_request(777, "approve", manager)

    def test_failed_apply_leaves_request_pending(self, customer, employee, admin, blob_store):
        approval = self._edit_request(customer, employee, phone="0611111111")
        # The record disappears before review
        mutation_service.perform_mutation(admin, "delete", "customer", customer.id)

        with pytest.raises(ResourceNotFound):
            approval_service.resolve_approval_request(approval["id"], "approve", admin)

        db.session.expire_all()
        stored = db.session.get(ApprovalRequest, approval["id"])
        assert stored.status == "pending"
        assert stored.reviewed_by_user_id is None
        assert stored.reviewed_at is None

    def test_approved_create_records_requester(self, employee, manager, blob_store):
        approval = approval_service.submit_approval_request(
            employee, "create", "customer",
            proposed_data={"first_name": "Salma", "last_name": "Idrissi", "type": "Prospect"},
        )

        outcome = approval_service.resolve_approval_request(approval["id"], "approve", manager)

        record = db.session.get(Customer, outcome.applied["id"])
        assert record.first_name == "Salma"
        assert record.created_by_user_id == employee.id
        assert outcome.approval["resource_id"] == record.id

    def test_approved_payment_reconciles_reservation(self, reservation, employee, manager, blob_store):
        approval = approval_service.submit_approval_request(
            employee, "create", "payment",
            proposed_data={"reservation_id": reservation.id, "amount": 400, "payment_type": "Advance"},
        )
        assert db.session.query(Payment).count() == 0

        outcome = approval_service.resolve_approval_request(approval["id"], "approve", manager)

        assert outcome.warnings == []
        db.session.expire_all()
        stored = db.session.get(Reservation, reservation.id)
        assert stored.payment_status == "Partially Paid"
        assert stored.remaining_balance == 600

    def test_approved_delete_of_reservation_with_payments_stays_pending(self, reservation, employee, admin, blob_store):
        mutation_service.perform_mutation(
            admin, "create", "payment", payload={"reservation_id": reservation.id, "amount": 100}
        )
        approval = approval_service.submit_approval_request(employee, "delete", "reservation", reservation.id)

        with pytest.raises(ValidationError):
            approval_service.resolve_approval_request(approval["id"], "approve", admin)

        db.session.expire_all()
        assert db.session.get(ApprovalRequest, approval["id"]).status == "pending"
        assert db.session.get(Reservation, reservation.id) is not None

    def test_staged_files_attached_on_approval(self, customer, employee, manager, blob_store, upload):
        approval = approval_service.submit_approval_request(
            employee, "edit", "customer", customer.id,
            proposed_data=_customer_form(customer),
            new_files=[upload("contract.pdf")],
        )

        approval_service.resolve_approval_request(approval["id"], "approve", manager)

        db.session.expire_all()
        attachments = db.session.get(Customer, customer.id).attachments
        assert [a["name"] for a in attachments] == ["contract.pdf"]
        assert attachments[0]["url"] in blob_store.blobs

    def test_staged_files_deleted_on_rejection(self, customer, employee, manager, blob_store, upload):
        approval = approval_service.submit_approval_request(
            employee, "edit", "customer", customer.id,
            proposed_data=_customer_form(customer),
            new_files=[upload("contract.pdf")],
        )
        staged_url = db.session.get(ApprovalRequest, approval["id"]).staged_attachments[0]["url"]

        approval_service.resolve_approval_request(approval["id"], "reject", manager)

        assert staged_url in blob_store.deleted
        assert staged_url not in blob_store.blobs

    def test_removed_attachment_deleted_on_approval(self, customer, employee, manager, blob_store):
        kept, dropped = blob_store.put("keep.pdf"), blob_store.put("drop.pdf")
        customer.attachments = [kept, dropped]
        db.session.commit()

        approval = approval_service.submit_approval_request(
            employee, "edit", "customer", customer.id,
            proposed_data=_customer_form(customer, attachments=[kept]),
        )
        assert not approval["new_data"]
        assert approval["removed_attachments"] == [dropped]
        assert approval["changed_fields"] == ["attachments"]
        assert blob_store.deleted == []

        approval_service.resolve_approval_request(approval["id"], "approve", manager)

        db.session.expire_all()
        assert [a["url"] for a in db.session.get(Customer, customer.id).attachments] == [kept["url"]]
        assert blob_store.deleted == [dropped["url"]]

    def test_approval_keeps_files_added_while_pending(self, customer, employee, admin, manager, blob_store, upload):
        old = blob_store.put("old-id.pdf")
        customer.attachments = [old]
        db.session.commit()

        approval = approval_service.submit_approval_request(
            employee, "edit", "customer", customer.id,
            proposed_data=_customer_form(customer, attachments=[]),
        )
        # An admin attaches a file directly before the request is reviewed
        mutation_service.perform_mutation(
            admin, "edit", "customer", customer.id, payload={"wedding_city": "Fes"}, files=[upload("contract.pdf")]
        )

        approval_service.resolve_approval_request(approval["id"], "approve", manager)

        db.session.expire_all()
        attachments = db.session.get(Customer, customer.id).attachments
        assert [a["name"] for a in attachments] == ["contract.pdf"]
        assert attachments[0]["url"] in blob_store.blobs
        assert blob_store.deleted == [old["url"]]


# =============================================================================
# QUERIES
# =============================================================================


class TestQueries:

    def test_pending_count_for_reviewers_only(self, customer, employee, manager, blob_store):
        approval_service.submit_approval_request(
            employee, "edit", "customer", customer.id, proposed_data=_customer_form(customer, phone="1")
        )
        approval_service.submit_approval_request(employee, "delete", "customer", customer.id)

        assert approval_service.count_pending_requests(manager) == 2
        assert approval_service.count_pending_requests(employee) == 0

    def test_list_requires_reviewer(self, employee, db_session):
        with pytest.raises(Forbidden):
            approval_service.list_approval_requests(employee)

    def test_list_filters_and_orders(self, customer, employee, manager, blob_store):
        first = approval_service.submit_approval_request(
            employee, "edit", "customer", customer.id, proposed_data=_customer_form(customer, phone="1")
        )
        second = approval_service.submit_approval_request(employee, "delete", "customer", customer.id)
        approval_service.resolve_approval_request(first["id"], "reject", manager)

        everything = approval_service.list_approval_requests(manager)
        pending = approval_service.list_approval_requests(manager, status="pending")

        assert [a["id"] for a in everything] == [second["id"], first["id"]]
        assert [a["id"] for a in pending] == [second["id"]]
        with pytest.raises(ValidationError):
            approval_service.list_approval_requests(manager, status="archived")

    def test_my_requests_and_visibility(self, customer, employee, manager, admin, blob_store):
        mine = approval_service.submit_approval_request(
            employee, "edit", "customer", customer.id, proposed_data=_customer_form(customer, phone="1")
        )

        assert [a["id"] for a in approval_service.list_my_requests(employee)] == [mine["id"]]
        assert approval_service.list_my_requests(manager) == []
        assert approval_service.get_approval_request(mine["id"], employee)["id"] == mine["id"]
        assert approval_service.get_approval_request(mine["id"], admin)["id"] == mine["id"]

    def test_delete_is_admin_only(self, customer, employee, manager, admin, blob_store, upload):
        approval = approval_service.submit_approval_request(
            employee, "edit", "customer", customer.id,
            proposed_data=_customer_form(customer), new_files=[upload("x.pdf")],
        )

        with pytest.raises(Forbidden):
            approval_service.delete_approval_request(approval["id"], manager)

        approval_service.delete_approval_request(approval["id"], admin)

        assert db.session.get(ApprovalRequest, approval["id"]) is None
        assert blob_store.blobs == {}
