"""
Request Guard - リクエストの検査とセキュリティヘッダー

1. ボディサイズ (MAX_BODY_SIZE を超えれば 413。chunked 転送は BodyLimitMiddleware が受信量で判定)
2. Content-Type (ボディ付きの POST/PUT/PATCH は application/json のみ、違反は 415)
3. CSRF トークン (状態を変更するリクエストはヘッダーに有効なトークンが必要、違反は 403)
"""
import logging
import secrets
import threading
import time
from typing import Callable, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from app.core.config import get_settings
from app.core.errors import AppError, AuthzError, PayloadTooLargeError, UnsupportedMediaTypeError

logger = logging.getLogger(__name__)

SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}
BODY_METHODS = {"POST", "PUT", "PATCH"}

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "X-XSS-Protection": "1; mode=block",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Content-Security-Policy": "default-src 'self'; img-src 'self' data:;",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


class CsrfTokenStore:
    """発行済み CSRF トークンと有効期限を保持するメモリ内ストア"""

    def __init__(self, length: int = 32, expiration: float = 3600.0,
                 clock: Callable[[], float] = time.monotonic):
        self.length = length
        self.expiration = expiration
        self._clock = clock
        self._lock = threading.Lock()
        self._tokens: Dict[str, float] = {}

    def issue(self) -> str:
        token = secrets.token_urlsafe(self.length)
        now = self._clock()
        with self._lock:
            self._purge_locked(now)
            self._tokens[token] = now + self.expiration
        return token

    def validate(self, token: Optional[str]) -> bool:
        if not token:
            return False
        now = self._clock()
        with self._lock:
            expires_at = self._tokens.get(token)
            if expires_at is None:
                return False
            if expires_at <= now:
                del self._tokens[token]
                return False
            return True

    def revoke(self, token: str):
        with self._lock:
            self._tokens.pop(token, None)

    def _purge_locked(self, now: float):
        expired = [t for t, expires_at in self._tokens.items() if expires_at <= now]
        for token in expired:
            del self._tokens[token]

    def __len__(self):
        with self._lock:
            return len(self._tokens)


def _content_length(request: Request) -> Optional[int]:
    value = request.headers.get("content-length")
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _has_body(request: Request, length: Optional[int]) -> bool:
    if length:
        return True
    return "chunked" in request.headers.get("transfer-encoding", "").lower()


def check_request(request: Request, store: CsrfTokenStore, settings=None):
    """ガード条件を順に検査し、違反があれば AppError を送出する"""
    settings = settings or get_settings()
    method = request.method.upper()
    length = _content_length(request)

    if length is not None and length > settings.MAX_BODY_SIZE:
        raise PayloadTooLargeError()

    if method in BODY_METHODS and _has_body(request, length):
        content_type = request.headers.get("content-type", "")
        if content_type.split(";")[0].strip().lower() != "application/json":
            raise UnsupportedMediaTypeError()

    if settings.CSRF_ENABLED and method not in SAFE_METHODS:
        token = request.headers.get(settings.CSRF_TOKEN_HEADER)
        if not token:
            raise AuthzError("CSRFトークンが必要です")
        if not store.validate(token):
            raise AuthzError("不正なCSRFトークンです")


def apply_security_headers(response):
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


def make_request_guard(store: CsrfTokenStore):
    """FastAPI の http ミドルウェアとして登録する関数を返す"""

    async def request_guard(request: Request, call_next):
        try:
            check_request(request, store)
        except AppError as exc:
            logger.warning("[Guard] %s %s rejected: %s", request.method, request.url.path, exc)
            return apply_security_headers(JSONResponse(exc.to_dict(), status_code=exc.status_code))
        response = await call_next(request)
        return apply_security_headers(response)

    return request_guard


class BodyLimitMiddleware:
    """
    ボディを MAX_BODY_SIZE まで読み込んでからアプリへ渡す ASGI ミドルウェア

    Content-Length のない chunked 転送も実際に受け取ったバイト数で打ち切り、413 を返す。
    読み込んだボディは 1 つのメッセージとしてアプリへ渡し直す。
    """

    def __init__(self, app, max_body_size: Optional[int] = None):
        self.app = app
        self.max_body_size = max_body_size

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http" or scope["method"].upper() not in BODY_METHODS:
            await self.app(scope, receive, send)
            return

        limit = self.max_body_size or get_settings().MAX_BODY_SIZE
        chunks = []
        size = 0
        more_body = True
        while more_body:
            message = await receive()
            if message["type"] == "http.disconnect":
                return
            chunk = message.get("body", b"")
            size += len(chunk)
            if size > limit:
                logger.warning("[Guard] %s %s rejected: body exceeds %d bytes",
                               scope["method"], scope.get("path", ""), limit)
                error = PayloadTooLargeError()
                response = apply_security_headers(JSONResponse(error.to_dict(), status_code=error.status_code))
                await response(scope, receive, send)
                return
            chunks.append(chunk)
            more_body = message.get("more_body", False)

        body = b"".join(chunks)
        delivered = False

        async def replay():
            nonlocal delivered
            if not delivered:
                delivered = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await receive()

        await self.app(scope, replay, send)


_settings = get_settings()

# グローバルシングルトン
csrf_store = CsrfTokenStore(_settings.CSRF_TOKEN_LENGTH, _settings.CSRF_TOKEN_EXPIRATION)
