"""
API Dependencies - ルーターが使う依存関係

テストでは app.dependency_overrides で差し替える。
"""
from app.core.config import get_settings
from app.core.context import OperationContext
from app.core.security import CsrfTokenStore, csrf_store
from app.services.cache import ReadCache, read_cache
from app.services.filter_options import FilterOptionService, filter_option_service
from app.services.loader import UniversityLoader, university_loader
from app.services.writer import UniversityWriter, university_writer


def get_loader() -> UniversityLoader:
    return university_loader


def get_writer() -> UniversityWriter:
    return university_writer


def get_filter_option_service() -> FilterOptionService:
    return filter_option_service


def get_cache() -> ReadCache:
    return read_cache


def get_csrf_store() -> CsrfTokenStore:
    return csrf_store


def read_context() -> OperationContext:
    """読み取り 1 回分の期限 (READ_TIMEOUT)"""
    return OperationContext(get_settings().READ_TIMEOUT, "read")


def write_context() -> OperationContext:
    """書き込み 1 回分の期限 (TX_TIMEOUT)"""
    return OperationContext(get_settings().TX_TIMEOUT, "write")
