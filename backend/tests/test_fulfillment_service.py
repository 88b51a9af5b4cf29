"""
Fulfillment tests.

Verifies:
- An approved request credits exactly its quantities and is consumed
- A second fulfill call credits nothing and returns the same ids
- Pending/rejected requests cannot be fulfilled
- A failing transfer rolls back and leaves a failed intent behind
"""

import pytest

from salesflow.errors import InvalidStateError, NotFoundError, PermissionDeniedError
from salesflow.models import InventoryRecord, OperationIntent, ProductRequest, StockMovement
from salesflow.services import catalog_service, fulfillment_service, request_service
from salesflow.services.intent_service import INTENT_STATUS_COMPLETED, INTENT_STATUS_FAILED
from salesflow.services.request_service import REQUEST_STATUS_APPROVED, REQUEST_STATUS_COMPLETED

SHOWROOM = "DS-SHOWROOM"


@pytest.fixture
def approved(db_session, products, rep, head_ops):
    req = request_service.create_request(rep, [{"product_id": "P1", "quantity": 5}])
    request_service.approve_request(req.id, head_ops)
    return req


class TestFulfill:

    def test_credits_exact_quantity_and_consumes_request(self, db_session, approved, rep, stocked):
        before = catalog_service.get_available("P1", SHOWROOM)

        inventory_ids = fulfillment_service.fulfill(approved.id, rep)

        assert catalog_service.get_available("P1", SHOWROOM) == before + 5
        assert inventory_ids == [stocked[0]]

        db_session.expire_all()
        req = db_session.get(ProductRequest, approved.id)
        assert req.status == REQUEST_STATUS_COMPLETED
        assert req.completed_by_user_id == rep.user_id
        assert req.fulfilled_location == SHOWROOM
        assert req.fulfilled_inventory_ids == inventory_ids

    def test_opens_record_when_location_has_none(self, db_session, approved, rep):
        inventory_ids = fulfillment_service.fulfill(approved.id, rep)

        record = db_session.get(InventoryRecord, inventory_ids[0])
        assert record.product_id == "P1"
        assert record.location == SHOWROOM
        assert record.quantity == 5

    def test_second_call_is_a_no_op(self, db_session, approved, rep):
        first = fulfillment_service.fulfill(approved.id, rep)
        second = fulfillment_service.fulfill(approved.id, rep)

        assert second == first
        assert catalog_service.get_available("P1", SHOWROOM) == 5
        assert db_session.query(StockMovement).filter_by(request_id=approved.id).count() == 1

    def test_intent_completed(self, db_session, approved, rep):
        fulfillment_service.fulfill(approved.id, rep)
        intent = db_session.query(OperationIntent).filter_by(
            key=fulfillment_service.intent_key(approved.id)
        ).one()
        assert intent.status == INTENT_STATUS_COMPLETED
        assert intent.result_id == approved.id

    def test_explicit_location(self, db_session, approved, head_ops):
        fulfillment_service.fulfill(approved.id, head_ops, location="GALLE")
        assert catalog_service.get_available("P1", "GALLE") == 5
        assert catalog_service.get_available("P1", SHOWROOM) == 0

    def test_default_location_when_request_has_none(self, app, db_session, products, make_user, head_ops):
        roaming = make_user("DirectRepresentative", name="Roaming Rep", location=None)
        req = request_service.create_request(roaming, [{"product_id": "P2", "quantity": 4}])
        request_service.approve_request(req.id, head_ops)

        fulfillment_service.fulfill(req.id, roaming)
        assert catalog_service.get_available("P2", app.config["DEFAULT_FULFILLMENT_LOCATION"]) == 4

    def test_records_activity(self, db_session, approved, rep):
        fulfillment_service.fulfill(approved.id, rep)
        types = [e["type"] for e in request_service.get_request_summary(approved.id)["timeline"]]
        assert types == ["request.created", "request.approved", "request.fulfilled"]


class TestFulfillRejected:

    def test_pending_request(self, db_session, products, rep):
        req = request_service.create_request(rep, [{"product_id": "P1", "quantity": 5}])
        with pytest.raises(InvalidStateError):
            fulfillment_service.fulfill(req.id, rep)
        assert catalog_service.get_available("P1") == 0

    def test_rejected_request(self, db_session, products, rep, head_ops):
        req = request_service.create_request(rep, [{"product_id": "P1", "quantity": 5}])
        request_service.reject_request(req.id, head_ops)
        with pytest.raises(InvalidStateError):
            fulfillment_service.fulfill(req.id, rep)

    def test_unknown_request(self, db_session, rep):
        with pytest.raises(NotFoundError):
            fulfillment_service.fulfill("missing", rep)

    def test_unrelated_field_user(self, db_session, approved, ds_staff):
        with pytest.raises(PermissionDeniedError):
            fulfillment_service.fulfill(approved.id, ds_staff)

    def test_failure_marks_intent_failed(self, db_session, approved, rep, monkeypatch):
        calls = []

        def exploding_credit(*args, **kwargs):
            calls.append(args)
            raise RuntimeError("disk full")

        monkeypatch.setattr(fulfillment_service, "credit_stock", exploding_credit)

        with pytest.raises(RuntimeError):
            fulfillment_service.fulfill(approved.id, rep)

        assert calls
        db_session.expire_all()
        intent = db_session.query(OperationIntent).filter_by(
            key=fulfillment_service.intent_key(approved.id)
        ).one()
        assert intent.status == INTENT_STATUS_FAILED
        assert "disk full" in intent.error
        assert db_session.get(ProductRequest, approved.id).status == REQUEST_STATUS_APPROVED

    def test_failed_intent_can_be_retried(self, db_session, approved, rep, monkeypatch):
        real_credit = fulfillment_service.credit_stock

        def flaky_credit(*args, **kwargs):
            raise RuntimeError("transient")

        monkeypatch.setattr(fulfillment_service, "credit_stock", flaky_credit)
        with pytest.raises(RuntimeError):
            fulfillment_service.fulfill(approved.id, rep)

        monkeypatch.setattr(fulfillment_service, "credit_stock", real_credit)
        fulfillment_service.fulfill(approved.id, rep)

        assert catalog_service.get_available("P1", SHOWROOM) == 5
        intent = db_session.query(OperationIntent).filter_by(
            key=fulfillment_service.intent_key(approved.id)
        ).one()
        assert intent.status == INTENT_STATUS_COMPLETED
        assert intent.attempts == 2
