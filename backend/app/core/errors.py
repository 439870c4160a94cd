"""
Application Errors - アプリケーションエラー

エラーは「種別 (kind)」で分類され、HTTP アダプタは種別からステータスコードを決める。
レスポンスには {code, message, details} のみを返し、スタックトレースは返さない。
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError


class ErrorKind(str, Enum):
    VALIDATION = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    NOT_FOUND = "NOT_FOUND"
    DUPLICATE_NAME = "DUPLICATE_NAME"
    CONFLICT = "CONFLICT"
    PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
    UNSUPPORTED_MEDIA_TYPE = "UNSUPPORTED_MEDIA_TYPE"
    TIMEOUT = "TIMEOUT_ERROR"
    CANCELLED = "CANCELLED"
    DATABASE = "DATABASE_ERROR"
    AUTH = "AUTHENTICATION_ERROR"
    AUTHZ = "AUTHORIZATION_ERROR"
    INTERNAL = "SYSTEM_ERROR"


STATUS_CODES = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.AUTH: 401,
    ErrorKind.AUTHZ: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.DUPLICATE_NAME: 409,
    ErrorKind.CONFLICT: 409,
    ErrorKind.PAYLOAD_TOO_LARGE: 413,
    ErrorKind.UNSUPPORTED_MEDIA_TYPE: 415,
    ErrorKind.CANCELLED: 499,
    ErrorKind.DATABASE: 500,
    ErrorKind.INTERNAL: 500,
    ErrorKind.TIMEOUT: 504,
}


class AppError(Exception):
    """種別・メッセージ・詳細マップを持つアプリケーションエラーの基底クラス"""

    kind = ErrorKind.INTERNAL
    default_message = "サーバー内部でエラーが発生しました"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self.kind]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.kind.value,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self):
        return f"{self.kind.value}: {self.message}"


class FieldError:
    """バリデーション違反 1 件（フィールドパス・メッセージ・コード）"""

    __slots__ = ("field_path", "message", "code")

    def __init__(self, field_path: str, message: str, code: str):
        self.field_path = field_path
        self.message = message
        self.code = code

    def to_dict(self) -> Dict[str, str]:
        return {"field_path": self.field_path, "message": self.message, "code": self.code}

    def __eq__(self, other):
        if not isinstance(other, FieldError):
            return NotImplemented
        return (self.field_path, self.message, self.code) == (other.field_path, other.message, other.code)

    def __repr__(self):
        return f"<FieldError({self.field_path}: {self.code})>"


class ValidationError(AppError):
    kind = ErrorKind.VALIDATION
    default_message = "入力内容に誤りがあります"

    def __init__(self, errors: List[FieldError], message: Optional[str] = None):
        self.errors = list(errors)
        super().__init__(message, {"errors": [e.to_dict() for e in self.errors]})

    @classmethod
    def single(cls, field_path: str, message: str, code: str) -> "ValidationError":
        return cls([FieldError(field_path, message, code)])

    def codes_at(self, field_path: str) -> List[str]:
        return [e.code for e in self.errors if e.field_path == field_path]


class InvalidInputError(AppError):
    kind = ErrorKind.INVALID_INPUT
    default_message = "リクエストの形式が不正です"

    def __init__(self, field: str, message: Optional[str] = None):
        super().__init__(message, {"field": field})


class NotFoundError(AppError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, resource: str, resource_id: Any = None, message: Optional[str] = None):
        super().__init__(
            message or f"{resource}が見つかりません",
            {"resource": resource, "id": resource_id},
        )


class ParentNotFoundError(NotFoundError):
    def __init__(self, resource: str, resource_id: Any = None):
        super().__init__(resource, resource_id, f"親の{resource}が見つかりません")
        self.details["code"] = "PARENT_NOT_FOUND"


class DuplicateNameError(AppError):
    kind = ErrorKind.DUPLICATE_NAME
    default_message = "同じ名前のデータが既に存在します"

    def __init__(self, resource: str = "", operation: str = ""):
        super().__init__(None, {"resource": resource, "operation": operation})


class ConflictError(AppError):
    kind = ErrorKind.CONFLICT
    default_message = "データが他の操作によって更新されています。再読み込みしてください"

    def __init__(self, resource: str, resource_id: Any = None, expected: Any = None, actual: Any = None):
        super().__init__(
            None,
            {"resource": resource, "id": resource_id, "expected_version": expected, "actual_version": actual},
        )


class PayloadTooLargeError(AppError):
    kind = ErrorKind.PAYLOAD_TOO_LARGE
    default_message = "リクエストボディが大きすぎます"


class UnsupportedMediaTypeError(AppError):
    kind = ErrorKind.UNSUPPORTED_MEDIA_TYPE
    default_message = "Content-Type は application/json である必要があります"


class OperationTimeoutError(AppError):
    kind = ErrorKind.TIMEOUT
    default_message = "処理がタイムアウトしました"

    def __init__(self, operation: str = ""):
        super().__init__(None, {"operation": operation})


class OperationCancelledError(AppError):
    kind = ErrorKind.CANCELLED
    default_message = "処理がキャンセルされました"

    def __init__(self, operation: str = ""):
        super().__init__(None, {"operation": operation})


class DatabaseError(AppError):
    kind = ErrorKind.DATABASE
    default_message = "データベース操作に失敗しました"

    def __init__(self, operation: str = "", message: Optional[str] = None):
        super().__init__(message, {"operation": operation})


class AuthError(AppError):
    kind = ErrorKind.AUTH
    default_message = "認証が必要です"


class AuthzError(AppError):
    kind = ErrorKind.AUTHZ
    default_message = "この操作を行う権限がありません"


class InternalError(AppError):
    kind = ErrorKind.INTERNAL


def _is_unique_violation(message: str) -> bool:
    return "unique" in message or "duplicate" in message


def _is_foreign_key_violation(message: str) -> bool:
    return "foreign key" in message or "foreign_key" in message


def translate_db_error(exc: Exception, operation: str, resource: str = "") -> AppError:
    """SQLAlchemy の例外をアプリケーションエラーに変換する"""
    if isinstance(exc, AppError):
        return exc
    if isinstance(exc, StaleDataError):
        return ConflictError(resource or "Resource")
    if isinstance(exc, IntegrityError):
        message = str(exc.orig if exc.orig is not None else exc).lower()
        if _is_unique_violation(message):
            return DuplicateNameError(resource, operation)
        if _is_foreign_key_violation(message):
            return ParentNotFoundError(resource or "Resource")
    if isinstance(exc, SQLAlchemyError):
        return DatabaseError(operation)
    return InternalError()
