"""
Transaction Runner - トランザクション実行とリトライ

1 回の試行ごとにセッションとトランザクションを開き、一時的な障害（デッドロック・
シリアライズ失敗・ロック待ち・タイムアウト・接続断）は指数バックオフで再試行する。
それ以外のエラーは最初の発生でそのまま呼び出し側に返す。
"""
import logging
import random
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session, SessionTransaction

from app.core.config import get_settings
from app.core.context import OperationContext
from app.core.errors import AppError, DatabaseError, translate_db_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_SIGNATURES = ("deadlock", "serialization", "timeout", "lock", "connection")

SERIALIZABLE = "SERIALIZABLE"
READ_COMMITTED = "READ COMMITTED"


@dataclass
class RetryPolicy:
    """リトライ設定（秒単位）"""

    initial_interval: float = 0.1
    multiplier: float = 2.0
    max_interval: float = 2.0
    randomization_factor: float = 0.1
    max_elapsed_time: float = 60.0
    max_retries: Optional[int] = None

    @classmethod
    def from_settings(cls, settings=None) -> "RetryPolicy":
        settings = settings or get_settings()
        return cls(
            initial_interval=settings.TX_INITIAL_INTERVAL,
            multiplier=settings.TX_MULTIPLIER,
            max_interval=settings.TX_MAX_INTERVAL,
            randomization_factor=settings.TX_RANDOMIZATION_FACTOR,
            max_elapsed_time=settings.TX_MAX_ELAPSED_TIME,
        )

    @classmethod
    def no_retry(cls) -> "RetryPolicy":
        return cls(max_retries=0)

    def backoff(self, attempt: int) -> float:
        """attempt 回目（0 始まり）の待機時間。上限で切り詰めてから揺らぎを加える"""
        base = min(self.initial_interval * (self.multiplier ** attempt), self.max_interval)
        if self.randomization_factor:
            delta = self.randomization_factor * base
            base = random.uniform(base - delta, base + delta)
        return max(base, 0.0)

    def delays(self) -> Iterator[float]:
        attempt = 0
        while self.max_retries is None or attempt < self.max_retries:
            yield self.backoff(attempt)
            attempt += 1


def is_retryable_error(exc: BaseException) -> bool:
    """ドライバのエラーメッセージに一時的障害のシグネチャが含まれるか"""
    if isinstance(exc, (AppError, IntegrityError)):
        return False
    if isinstance(exc, DBAPIError) and exc.orig is not None:
        message = str(exc.orig)
    else:
        message = str(exc)
    message = message.lower()
    return any(signature in message for signature in RETRYABLE_SIGNATURES)


class Transaction:
    """1 回の試行中のトランザクション。セーブポイントで部分的にロールバックできる"""

    def __init__(self, session: Session, context: OperationContext):
        self.session = session
        self.context = context

    def begin_savepoint(self) -> SessionTransaction:
        return self.session.begin_nested()

    def rollback_to(self, savepoint: SessionTransaction):
        if savepoint.is_active:
            savepoint.rollback()

    def release(self, savepoint: SessionTransaction):
        if savepoint.is_active:
            savepoint.commit()

    @contextmanager
    def savepoint(self):
        """ブロック内で例外が起きたらセーブポイントまで戻し、例外を再送出する"""
        savepoint = self.begin_savepoint()
        try:
            yield savepoint
        except BaseException:
            self.rollback_to(savepoint)
            raise
        else:
            self.release(savepoint)


class TransactionRunner:
    def __init__(self, session_factory, policy: Optional[RetryPolicy] = None,
                 read_only: Optional[bool] = None, isolation: Optional[str] = None,
                 timeout: Optional[float] = None):
        settings = get_settings()
        self.session_factory = session_factory
        self.policy = policy or RetryPolicy.from_settings(settings)
        self.read_only = settings.TX_READ_ONLY if read_only is None else read_only
        self.isolation = isolation or settings.TX_ISOLATION
        self.timeout = settings.TX_TIMEOUT if timeout is None else timeout

    def check_writable(self, operation: str = ""):
        """読み取り専用のランナーでは書き込みを拒否する"""
        if self.read_only:
            raise DatabaseError(operation, "読み取り専用のトランザクションでは書き込めません")

    def run(self, fn: Callable[[Transaction], T], ctx: Optional[OperationContext] = None,
            policy: Optional[RetryPolicy] = None, isolation: Optional[str] = None,
            operation: str = "") -> T:
        """
        fn をトランザクション内で実行してコミットする

        Args:
            fn: Transaction を受け取る処理。戻り値はセッションに依存しない値にすること
            ctx: 期限とキャンセル。省略時は TX_TIMEOUT の期限を持つ
            policy: このコールだけのリトライ設定
            isolation: 分離レベル（既定は READ COMMITTED）

        Returns:
            fn の戻り値
        """
        ctx = ctx or OperationContext(self.timeout, operation)
        policy = policy or self.policy
        isolation = isolation or self.isolation
        started = time.monotonic()
        delays = policy.delays()
        attempt = 0

        while True:
            ctx.check()
            attempt += 1
            try:
                return self._attempt(fn, ctx, isolation)
            except AppError:
                raise
            except Exception as exc:
                if not is_retryable_error(exc):
                    logger.error("[Tx] %s failed: %s", operation, exc)
                    raise translate_db_error(exc, operation) from exc
                delay = next(delays, None)
                elapsed = time.monotonic() - started
                if delay is None or elapsed + delay > policy.max_elapsed_time:
                    logger.error("[Tx] %s gave up after %d attempts: %s", operation, attempt, exc)
                    raise translate_db_error(exc, operation) from exc
                logger.warning(
                    "[Tx] %s attempt %d failed (%s), retrying in %.3fs", operation, attempt, exc, delay
                )
                ctx.sleep(delay)

    def _attempt(self, fn, ctx: OperationContext, isolation: str):
        session = self.session_factory()
        try:
            if session.get_bind().dialect.name != "sqlite":
                session.connection(execution_options={"isolation_level": isolation})
            result = fn(Transaction(session, ctx))
            ctx.check()
            if self.read_only:
                session.rollback()
            else:
                session.commit()
            return result
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()
