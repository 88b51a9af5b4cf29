"""
Request lifecycle tests.

Verifies:
- Creation validates items before anything is written
- Approve/reject respects approval scopes and self-approval
- A decided request cannot be decided again (first decision stands)
- Pending views are scoped, lazy and re-iterable
"""

import re

import pytest

from salesflow.errors import InvalidStateError, NotFoundError, PermissionDeniedError, ValidationError
from salesflow.models import ActivityLogEntry, ProductRequest
from salesflow.services import request_service
from salesflow.services.request_service import (
    REQUEST_STATUS_APPROVED,
    REQUEST_STATUS_PENDING,
    REQUEST_STATUS_REJECTED,
    can_transition,
)


def _request(requester, quantity=5, product_id="P1", **kwargs):
    return request_service.create_request(
        requester,
        [{"product_id": product_id, "quantity": quantity}],
        **kwargs,
    )


# =============================================================================
# CREATION
# =============================================================================


class TestCreateRequest:

    def test_creates_pending_request_with_number(self, db_session, products, rep):
        req = _request(rep, notes="Weekend promo")

        assert req.status == REQUEST_STATUS_PENDING
        assert re.match(r"^REQ-\d{8}-\d{4}$", req.request_number)
        assert req.requested_by_user_id == rep.user_id
        assert req.requested_by_role == rep.role
        assert req.location == "DS-SHOWROOM"
        assert [(i.product_id, i.quantity) for i in req.items] == [("P1", 5)]

    def test_request_numbers_increase(self, db_session, products, rep):
        first = _request(rep)
        second = _request(rep)
        assert first.request_number[:-4] == second.request_number[:-4]
        assert int(second.request_number[-4:]) == int(first.request_number[-4:]) + 1

    def test_records_created_activity(self, db_session, products, rep):
        req = _request(rep)
        entries = db_session.query(ActivityLogEntry).filter_by(request_id=req.id).all()
        assert [e.type for e in entries] == ["request.created"]
        assert entries[0].actor_user_id == rep.user_id

    @pytest.mark.parametrize(
        "items",
        [
            [],
            None,
            [{"product_id": "P1", "quantity": 0}],
            [{"product_id": "P1", "quantity": -2}],
            [{"product_id": "P1", "quantity": 1.5}],
            [{"product_id": "NOPE", "quantity": 1}],
            [{"quantity": 1}],
            [{"product_id": "P1", "quantity": 1, "urgency": "whenever"}],
        ],
    )
    def test_invalid_items_write_nothing(self, db_session, products, rep, items):
        with pytest.raises(ValidationError):
            request_service.create_request(rep, items)
        assert db_session.query(ProductRequest).count() == 0

    def test_invalid_priority(self, db_session, products, rep):
        with pytest.raises(ValidationError):
            _request(rep, priority="asap")

    def test_role_without_create_permission(self, db_session, products, head_ops):
        with pytest.raises(PermissionDeniedError):
            _request(head_ops)


# =============================================================================
# APPROVE / REJECT
# =============================================================================


class TestTransitions:

    def test_approve_sets_approver(self, db_session, products, rep, head_ops):
        req = _request(rep)
        approved = request_service.approve_request(req.id, head_ops, "ok")

        assert approved.status == REQUEST_STATUS_APPROVED
        assert approved.approved_by_user_id == head_ops.user_id
        assert approved.approved_by_name == head_ops.display_name
        assert approved.approved_at is not None
        assert approved.approval_notes == "ok"

    def test_reject_sets_reason(self, db_session, products, rep, director):
        req = _request(rep)
        rejected = request_service.reject_request(req.id, director, "Over budget")

        assert rejected.status == REQUEST_STATUS_REJECTED
        assert rejected.rejected_by_user_id == director.user_id
        assert rejected.rejection_reason == "Over budget"
        assert rejected.approved_by_user_id is None

    def test_reject_after_approve_keeps_first_decision(self, db_session, products, rep, head_ops, director):
        req = _request(rep)
        request_service.approve_request(req.id, head_ops)

        with pytest.raises(InvalidStateError):
            request_service.reject_request(req.id, director, "too late")

        db_session.expire_all()
        stored = db_session.get(ProductRequest, req.id)
        assert stored.status == REQUEST_STATUS_APPROVED
        assert stored.approved_by_user_id == head_ops.user_id
        assert stored.rejected_by_user_id is None
        assert stored.rejection_reason is None

    def test_second_approval_is_rejected(self, db_session, products, rep, head_ops, director):
        req = _request(rep)
        request_service.approve_request(req.id, head_ops)

        with pytest.raises(InvalidStateError):
            request_service.approve_request(req.id, director)

        db_session.expire_all()
        assert db_session.get(ProductRequest, req.id).approved_by_user_id == head_ops.user_id

    def test_transitions_record_activity(self, db_session, products, rep, head_ops):
        req = _request(rep)
        request_service.approve_request(req.id, head_ops)
        types = [
            e.type for e in db_session.query(ActivityLogEntry)
            .filter_by(request_id=req.id)
            .order_by(ActivityLogEntry.occurred_at, ActivityLogEntry.id)
        ]
        assert types == ["request.created", "request.approved"]

    def test_showroom_manager_approves_staff(self, db_session, products, ds_staff, ds_manager):
        req = _request(ds_staff)
        assert request_service.approve_request(req.id, ds_manager).status == REQUEST_STATUS_APPROVED

    def test_showroom_manager_cannot_approve_distributor_rep(self, db_session, products, distributor_rep, ds_manager):
        req = _request(distributor_rep)
        with pytest.raises(PermissionDeniedError):
            request_service.approve_request(req.id, ds_manager)
        db_session.expire_all()
        assert db_session.get(ProductRequest, req.id).status == REQUEST_STATUS_PENDING

    def test_distributor_approves_own_reps(self, db_session, products, distributor_rep, distributor):
        req = _request(distributor_rep)
        assert request_service.approve_request(req.id, distributor).status == REQUEST_STATUS_APPROVED

    def test_requester_cannot_approve_own_request(self, db_session, products, ds_manager):
        req = _request(ds_manager)
        with pytest.raises(PermissionDeniedError):
            request_service.approve_request(req.id, ds_manager)

    def test_unknown_request(self, db_session, head_ops):
        with pytest.raises(NotFoundError):
            request_service.approve_request("missing", head_ops)

    def test_unknown_action(self, db_session, products, rep, head_ops):
        req = _request(rep)
        with pytest.raises(ValidationError):
            request_service.transition(req.id, head_ops, "escalate")

    def test_allowed_transitions(self):
        assert can_transition("pending", "approved")
        assert can_transition("pending", "rejected")
        assert can_transition("approved", "completed")
        assert not can_transition("approved", "rejected")
        assert not can_transition("rejected", "approved")
        assert not can_transition("completed", "pending")


# =============================================================================
# PENDING VIEWS AND LOOKUPS
# =============================================================================


class TestPendingViews:

    def test_scoped_to_approvable_roles(self, db_session, products, rep, ds_staff, distributor_rep, ds_manager, head_ops):
        _request(rep)
        staff_req = _request(ds_staff)
        _request(distributor_rep)

        manager_view = [r.id for r in request_service.list_pending_for(ds_manager)]
        assert manager_view == [staff_req.id]

        head_view = request_service.list_pending_for(head_ops)
        assert head_view.count() == 3

    def test_role_without_approval_sees_nothing(self, db_session, products, rep):
        _request(rep)
        view = request_service.list_pending_for(rep)
        assert list(view) == []
        assert view.count() == 0

    def test_excludes_own_requests(self, db_session, products, ds_staff, admin):
        _request(ds_staff)
        request_service.create_request(admin, [{"product_id": "P1", "quantity": 1}])
        assert [r.requested_by_user_id for r in request_service.list_pending_for(admin)] == [ds_staff.user_id]

    def test_view_can_be_iterated_again(self, db_session, products, rep, head_ops):
        first = _request(rep)
        view = request_service.list_pending_for(head_ops)
        assert [r.id for r in view] == [first.id]

        second = _request(rep, quantity=2)
        request_service.approve_request(first.id, head_ops)
        assert [r.id for r in view] == [second.id]

    def test_filters(self, db_session, products, rep, head_ops):
        urgent = _request(rep, priority="urgent")
        _request(rep, location="GALLE")
        view = request_service.list_pending_for("HeadOfOperations", priority="urgent")
        assert [r.id for r in view] == [urgent.id]
        assert request_service.list_pending_for("HeadOfOperations", location="GALLE").count() == 1

    def test_history_and_search(self, db_session, products, rep, head_ops):
        first = _request(rep)
        second = _request(rep)
        request_service.reject_request(second.id, head_ops)

        history = request_service.list_requests_for_requester(rep.user_id)
        assert {r.id for r in history} == {first.id, second.id}
        assert [r.id for r in request_service.list_requests_for_requester(rep.user_id, "rejected")] == [second.id]

        assert [r.id for r in request_service.search_requests(first.request_number)] == [first.id]
        assert len(request_service.search_requests("Nimal")) == 2
        assert [r.id for r in request_service.search_requests("rejected")] == [second.id]

    def test_summary_includes_timeline(self, db_session, products, rep, head_ops):
        req = request_service.create_request(
            rep,
            [{"product_id": "P1", "quantity": 5}, {"product_id": "P2", "quantity": 3}],
        )
        request_service.approve_request(req.id, head_ops)

        summary = request_service.get_request_summary(req.id)
        assert summary["item_count"] == 2
        assert summary["total_quantity"] == 8
        assert [e["type"] for e in summary["timeline"]] == ["request.created", "request.approved"]
