"""
Transaction Runner Tests
"""
import threading
import time

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError

from app.core.context import OperationContext
from app.core.errors import (
    DatabaseError,
    DuplicateNameError,
    InternalError,
    NotFoundError,
    OperationCancelledError,
    OperationTimeoutError,
)
from app.models import university as models
from app.services.transaction import RetryPolicy, TransactionRunner, is_retryable_error

from factories import fast_policy


def locked_error():
    return OperationalError("UPDATE universities", {}, Exception("database is locked"))


def count_universities(session_factory):
    with session_factory() as db:
        return db.scalar(select(func.count(models.University.id)))


class Flaky:
    """指定回数だけ失敗してから大学を 1 件追加する処理"""

    def __init__(self, failures, error=locked_error):
        self.failures = failures
        self.error = error
        self.calls = 0

    def __call__(self, tx):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error()
        tx.session.add(models.University(name=f"大学{self.calls}"))
        tx.session.flush()
        return self.calls


# =============================================================================
# リトライ
# =============================================================================

class TestRetry:

    def test_retryable_error_is_retried_until_success(self, runner, session_factory):
        fn = Flaky(failures=2)
        assert runner.run(fn, operation="flaky") == 3
        assert count_universities(session_factory) == 1

    def test_non_retryable_error_surfaces_on_first_attempt(self, runner):
        fn = Flaky(failures=5, error=lambda: ValueError("boom"))
        with pytest.raises(InternalError):
            runner.run(fn)
        assert fn.calls == 1

    def test_app_error_is_not_retried(self, runner):
        fn = Flaky(failures=5, error=lambda: NotFoundError("University", 1))
        with pytest.raises(NotFoundError):
            runner.run(fn)
        assert fn.calls == 1

    def test_gives_up_after_max_retries(self, session_factory):
        runner = TransactionRunner(session_factory, policy=fast_policy(max_retries=2))
        fn = Flaky(failures=10)
        with pytest.raises(DatabaseError):
            runner.run(fn)
        assert fn.calls == 3

    def test_no_retry_policy_exposes_first_failure(self, session_factory):
        runner = TransactionRunner(session_factory, policy=RetryPolicy.no_retry())
        fn = Flaky(failures=1)
        with pytest.raises(DatabaseError):
            runner.run(fn)
        assert fn.calls == 1

    def test_unique_violation_becomes_duplicate_name(self, runner):
        def create(tx):
            tx.session.add(models.University(name="東京大学"))
            tx.session.flush()

        runner.run(create)
        with pytest.raises(DuplicateNameError):
            runner.run(create)

    def test_failed_attempt_is_rolled_back(self, runner, session_factory):
        calls = []

        def fn(tx):
            calls.append(1)
            tx.session.add(models.University(name=f"大学{len(calls)}"))
            tx.session.flush()
            if len(calls) == 1:
                raise locked_error()

        runner.run(fn)
        with session_factory() as db:
            assert list(db.scalars(select(models.University.name))) == ["大学2"]


class TestRetryPolicy:

    def test_backoff_grows_and_is_capped(self):
        policy = RetryPolicy(initial_interval=0.1, multiplier=2.0, max_interval=0.5, randomization_factor=0)
        assert [round(policy.backoff(i), 3) for i in range(5)] == [0.1, 0.2, 0.4, 0.5, 0.5]

    def test_jitter_stays_within_factor(self):
        policy = RetryPolicy(initial_interval=1.0, randomization_factor=0.1)
        for _ in range(50):
            assert 0.9 <= policy.backoff(0) <= 1.1

    def test_delays_respect_max_retries(self):
        assert len(list(RetryPolicy(max_retries=3).delays())) == 3
        assert list(RetryPolicy.no_retry().delays()) == []

    @pytest.mark.parametrize("message, retryable", [
        ("Deadlock found when trying to get lock", True),
        ("could not serialize access due to concurrent update (serialization failure)", True),
        ("Lock wait timeout exceeded", True),
        ("Lost connection to MySQL server", True),
        ("syntax error", False),
    ])
    def test_signature_matching(self, message, retryable):
        assert is_retryable_error(OperationalError("stmt", {}, Exception(message))) is retryable

    def test_integrity_errors_are_never_retried(self):
        error = IntegrityError("stmt", {}, Exception("Duplicate entry 'lock' for key 'uix_university_name'"))
        assert is_retryable_error(error) is False


# =============================================================================
# 期限とキャンセル
# =============================================================================

class TestDeadlineAndCancel:

    def test_cancelled_before_start(self, runner, session_factory):
        ctx = OperationContext(10, "create")
        ctx.cancel()
        fn = Flaky(failures=0)
        with pytest.raises(OperationCancelledError):
            runner.run(fn, ctx)
        assert fn.calls == 0
        assert count_universities(session_factory) == 0

    def test_cancel_wakes_backoff_sleep(self, session_factory):
        runner = TransactionRunner(
            session_factory, policy=fast_policy(initial_interval=5, max_interval=5, max_elapsed_time=60)
        )
        ctx = OperationContext(30, "create")
        timer = threading.Timer(0.05, ctx.cancel)
        timer.start()
        started = time.monotonic()
        try:
            with pytest.raises(OperationCancelledError):
                runner.run(Flaky(failures=10), ctx)
        finally:
            timer.cancel()
        assert time.monotonic() - started < 2

    def test_backoff_never_sleeps_past_deadline(self, session_factory):
        runner = TransactionRunner(
            session_factory, policy=fast_policy(initial_interval=5, max_interval=5, max_elapsed_time=60)
        )
        started = time.monotonic()
        with pytest.raises(OperationTimeoutError):
            runner.run(Flaky(failures=10), OperationContext(0.1, "create"))
        assert time.monotonic() - started < 2

    def test_cancel_before_commit_leaves_store_unchanged(self, runner, session_factory):
        ctx = OperationContext(10, "create")

        def fn(tx):
            tx.session.add(models.University(name="京都大学"))
            tx.session.flush()
            ctx.cancel()

        with pytest.raises(OperationCancelledError):
            runner.run(fn, ctx)
        assert count_universities(session_factory) == 0


# =============================================================================
# セーブポイントと読み取り専用
# =============================================================================

class TestSavepoint:

    def test_rollback_to_savepoint_keeps_earlier_work(self, runner, session_factory):
        def fn(tx):
            tx.session.add(models.University(name="大阪大学"))
            tx.session.flush()
            with pytest.raises(RuntimeError):
                with tx.savepoint():
                    tx.session.add(models.University(name="神戸大学"))
                    tx.session.flush()
                    raise RuntimeError("partial")

        runner.run(fn)
        with session_factory() as db:
            assert list(db.scalars(select(models.University.name))) == ["大阪大学"]

    def test_explicit_savepoint_release(self, runner, session_factory):
        def fn(tx):
            savepoint = tx.begin_savepoint()
            tx.session.add(models.University(name="九州大学"))
            tx.session.flush()
            tx.release(savepoint)

        runner.run(fn)
        assert count_universities(session_factory) == 1

    def test_read_only_runner_rolls_back(self, session_factory):
        runner = TransactionRunner(session_factory, policy=fast_policy(), read_only=True)
        assert runner.run(Flaky(failures=0)) == 1
        assert count_universities(session_factory) == 0

    def test_read_only_runner_rejects_writes(self, session_factory):
        runner = TransactionRunner(session_factory, policy=fast_policy(), read_only=True)
        with pytest.raises(DatabaseError) as exc_info:
            runner.check_writable("create_university")
        assert exc_info.value.details["operation"] == "create_university"
        TransactionRunner(session_factory, read_only=False).check_writable("create_university")
