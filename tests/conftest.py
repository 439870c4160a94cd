"""
共通フィクスチャ

アプリケーションのモジュールを読み込む前に、モジュールレベルのエンジンが使う
DATABASE_URL を一時ディレクトリの SQLite に向ける。
"""
import os
import tempfile

_BOOTSTRAP_DIR = tempfile.mkdtemp(prefix="university_exam_")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_BOOTSTRAP_DIR, 'bootstrap.db')}")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("CACHE_CLEANUP_INTERVAL", "0")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.api import deps  # noqa: E402
from app.core.config import get_settings  # noqa: E402
from app.core.database import Base, make_engine, make_session_factory  # noqa: E402
from app.models import filter_option, university  # noqa: E402,F401
from app.services.cache import ReadCache  # noqa: E402
from app.services.filter_options import FilterOptionService  # noqa: E402
from app.services.loader import UniversityLoader  # noqa: E402
from app.services.transaction import TransactionRunner  # noqa: E402
from app.services.writer import UniversityWriter  # noqa: E402
from factories import fast_policy  # noqa: E402


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def cache():
    return ReadCache(60)


@pytest.fixture
def runner(session_factory):
    return TransactionRunner(session_factory, policy=fast_policy(), timeout=10)


@pytest.fixture
def loader(session_factory, cache):
    return UniversityLoader(session_factory, cache, read_timeout=10)


@pytest.fixture
def writer(runner, cache, loader):
    return UniversityWriter(runner, cache, loader)


@pytest.fixture
def filter_service(runner, cache, loader):
    return FilterOptionService(runner, cache, loader)


@pytest.fixture
def app(loader, writer, cache, filter_service):
    from main import app

    app.dependency_overrides[deps.get_loader] = lambda: loader
    app.dependency_overrides[deps.get_writer] = lambda: writer
    app.dependency_overrides[deps.get_cache] = lambda: cache
    app.dependency_overrides[deps.get_filter_option_service] = lambda: filter_service
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """CSRF トークンをヘッダーに付けたテストクライアント"""
    with TestClient(app) as c:
        token = c.get("/csrf").json()["token"]
        c.headers.update({get_settings().CSRF_TOKEN_HEADER: token})
        yield c
