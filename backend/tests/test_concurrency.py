"""
Transaction helper tests.

Verifies:
- Lock/stale errors are retried, then surface as TransientFailureError
- Any failure rolls the session back
"""

import threading
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from conftest import assert_stock_consistent, make_product
from frostpos import create_app
from frostpos.errors import ConflictError, TransientFailureError, ValidationError
from frostpos.extensions import db
from frostpos.models import Category, Product, StockLog
from frostpos.services import orders_service
from frostpos.services.concurrency import begin_write, run_with_retry


def _locked():
    return OperationalError("UPDATE products", {}, Exception("database is locked"))


class TestRunWithRetry:

    def test_succeeds_after_transient_failures(self, db_session):
        calls = []

        def _op():
            calls.append(1)
            if len(calls) < 3:
                raise _locked()
            return "ok"

        assert run_with_retry(_op, attempts=3, backoff_base=0) == "ok"
        assert len(calls) == 3

    def test_exhausted_retries_become_transient_failure(self, db_session):
        calls = []

        def _op():
            calls.append(1)
            raise StaleDataError("version mismatch")

        with pytest.raises(TransientFailureError) as exc:
            run_with_retry(_op, attempts=2, backoff_base=0)

        assert len(calls) == 2
        assert exc.value.status_code == 503
        assert exc.value.details["attempts"] == 2

    def test_domain_errors_are_not_retried(self, db_session):
        calls = []

        def _op():
            calls.append(1)
            raise ValidationError("nope")

        with pytest.raises(ValidationError):
            run_with_retry(_op, attempts=3, backoff_base=0)
        assert len(calls) == 1

    def test_failure_rolls_back_pending_writes(self, db_session):
        def _op():
            db.session.add(Category(name="Half written"))
            db.session.flush()
            raise ValidationError("abort")

        with pytest.raises(ValidationError):
            run_with_retry(_op)

        assert db.session.query(Category).count() == 0


class TestOptimisticVersion:

    def test_stale_product_write_detected(self, db_session):
        """
        SCENARIO: Another writer bumps the product's version between our read and write.
        EXPECTED: StaleDataError from the flush (retried by run_with_retry).
        """
        p = make_product()
        p = db.session.get(Product, p.id)
        current = p.version_id

        db.session.execute(
            Product.__table__.update().where(Product.__table__.c.id == p.id).values(version_id=current + 1)
        )

        p.name = "Lost update"
        with pytest.raises(StaleDataError):
            db.session.flush()
        db.session.rollback()


class TestBeginWrite:

    def test_takes_write_lock_when_idle(self, db_session):
        db.session.commit()
        assert not db.session().in_transaction()

        begin_write()

        assert db.session().in_transaction()
        db.session.rollback()

    def test_joins_open_transaction(self, db_session):
        db.session.add(Category(name="Open"))
        db.session.flush()

        begin_write()

        assert db.session.query(Category).count() == 1
        db.session.rollback()


# =============================================================================
# RACING WRITERS ON A FILE DATABASE
# =============================================================================


@pytest.fixture
def file_app(tmp_path):
    """Separate app on a file-backed SQLite database, so each thread gets its own connection."""
    race_app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'race.sqlite3'}",
        'TX_RETRY_BACKOFF': 0.01,
        'TX_RETRY_ATTEMPTS': 5,
        'LOG_LEVEL': 'WARNING',
    })
    with race_app.app_context():
        db.create_all()
    yield race_app
    with race_app.app_context():
        db.session.remove()
        db.engine.dispose()


class TestConcurrentCompletion:
    """
    SCENARIO: Four cashiers submit payment for the same ticket at the same moment.
    EXPECTED: Exactly one completes it; the rest get a conflict; stock drops once.
    """

    WORKERS = 4

    def test_only_one_completion_wins(self, file_app):
        with file_app.app_context():
            p = make_product(stock=10)
            product_id = p.id
            order = orders_service.create_order(cashier_id=2, items=[{"product_id": product_id, "quantity": 3}])
            order_id = order.id
            db.session.remove()

        barrier = threading.Barrier(self.WORKERS)
        outcomes = []
        lock = threading.Lock()

        def _checkout():
            with file_app.app_context():
                barrier.wait()
                try:
                    orders_service.complete_order(order_id, user_id=2, amount_paid=Decimal("50.00"))
                    result = "ok"
                except ConflictError:
                    result = "conflict"
                except Exception as exc:
                    result = repr(exc)
                finally:
                    db.session.remove()
                with lock:
                    outcomes.append(result)

        threads = [threading.Thread(target=_checkout) for _ in range(self.WORKERS)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert sorted(outcomes) == ["conflict"] * (self.WORKERS - 1) + ["ok"]

        with file_app.app_context():
            assert db.session.get(Product, product_id).stock == 7
            assert db.session.query(StockLog).filter_by(order_id=order_id, type="SALE").count() == 1
            assert_stock_consistent(product_id)
