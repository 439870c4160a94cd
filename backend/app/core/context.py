"""
Operation Context - 操作コンテキスト（期限とキャンセル）
"""
import threading
import time
from typing import Optional

from app.core.errors import OperationCancelledError, OperationTimeoutError


class OperationContext:
    """
    1 回の操作に付随する期限とキャンセルトークン

    リトライ待機は sleep() を通して行うので、キャンセルされると即座に起きる。
    期限を超える待機はしない。
    """

    def __init__(self, timeout: Optional[float] = None, operation: str = ""):
        self.operation = operation
        self.deadline = time.monotonic() + timeout if timeout is not None else None
        self._cancelled = threading.Event()

    def cancel(self):
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(self.deadline - time.monotonic(), 0.0)

    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def check(self):
        if self._cancelled.is_set():
            raise OperationCancelledError(self.operation)
        if self.expired():
            raise OperationTimeoutError(self.operation)

    def sleep(self, seconds: float):
        """seconds 秒待つ。途中でキャンセルされた場合や期限を超える場合は例外を送出する"""
        self.check()
        remaining = self.remaining()
        if remaining is not None and seconds >= remaining:
            self._cancelled.wait(remaining)
            self.check()
            raise OperationTimeoutError(self.operation)
        if self._cancelled.wait(seconds):
            raise OperationCancelledError(self.operation)
