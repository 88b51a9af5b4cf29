"""
Concurrency tests.

Verifies:
- run_with_retry retries a lost compare-and-set and surfaces the new state
- Exhausted retries become InvalidStateError / StorageError
- Domain errors are never retried
- A stale version write on a request is rejected (compare-and-set)
"""

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from salesflow.errors import InvalidStateError, StorageError, ValidationError
from salesflow.models import ProductRequest
from salesflow.services import request_service
from salesflow.services.concurrency import run_with_retry


class TestRunWithRetry:

    def test_returns_first_success(self, db_session):
        assert run_with_retry(lambda: 42) == 42

    def test_retries_stale_write(self, db_session):
        calls = []

        def op():
            calls.append(1)
            if len(calls) < 3:
                raise StaleDataError("lost")
            return "ok"

        assert run_with_retry(op, backoff_base=0) == "ok"
        assert len(calls) == 3

    def test_stale_write_exhausted(self, db_session):
        def op():
            raise StaleDataError("lost")

        with pytest.raises(InvalidStateError):
            run_with_retry(op, attempts=2, backoff_base=0)

    def test_operational_error_exhausted(self, db_session):
        calls = []

        def op():
            calls.append(1)
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

        with pytest.raises(StorageError) as excinfo:
            run_with_retry(op, attempts=3, backoff_base=0)
        assert len(calls) == 3
        assert excinfo.value.to_dict()["retryable"] is True

    def test_domain_errors_not_retried(self, db_session):
        calls = []

        def op():
            calls.append(1)
            raise ValidationError("bad input")

        with pytest.raises(ValidationError):
            run_with_retry(op, backoff_base=0)
        assert len(calls) == 1


class TestCompareAndSet:

    def test_concurrent_decision_loses(self, db_session, products, rep, head_ops, director):
        req = request_service.create_request(rep, [{"product_id": "P1", "quantity": 5}])

        # Another approver commits first
        db_session.execute(
            update(ProductRequest)
            .where(ProductRequest.id == req.id)
            .values(
                status="approved",
                approved_by_user_id=director.user_id,
                version_id=ProductRequest.version_id + 1,
            )
        )
        db_session.commit()

        with pytest.raises(InvalidStateError):
            request_service.reject_request(req.id, head_ops, "late")

        db_session.expire_all()
        stored = db_session.get(ProductRequest, req.id)
        assert stored.status == "approved"
        assert stored.approved_by_user_id == director.user_id
        assert stored.rejected_by_user_id is None

    def test_stale_flush_raises(self, db_session, products, rep):
        req = request_service.create_request(rep, [{"product_id": "P1", "quantity": 5}])
        stale = db_session.get(ProductRequest, req.id)
        version_seen = stale.version_id

        db_session.execute(
            update(ProductRequest)
            .where(ProductRequest.id == req.id)
            .values(version_id=version_seen + 1)
            .execution_options(synchronize_session=False)
        )

        stale.status = "rejected"
        with pytest.raises(StaleDataError):
            db_session.flush()
        db_session.rollback()
