from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import get_settings

settings = get_settings()

Base = declarative_base()


def _enable_sqlite_features(engine):
    """SQLite: 外部キー制約を有効化し、SAVEPOINT が使えるよう BEGIN を自前で発行する"""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def make_engine(url: str, **overrides):
    """
    データベースエンジンを生成する

    コネクションプールの上限・寿命は設定値から決まる。
    SQLite（テスト用）の場合はスレッド間共有と外部キーを有効にする。
    """
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        kwargs.update(overrides)
        engine = create_engine(url, **kwargs)
        _enable_sqlite_features(engine)
        return engine

    connect_args = {}
    if settings.DB_SSL_MODE != "disable":
        connect_args["ssl"] = {"check_hostname": settings.DB_SSL_MODE == "verify-full"}

    kwargs = {
        "pool_pre_ping": True,  # 切断された接続を自動検出
        "pool_recycle": int(settings.DB_CONN_MAX_LIFETIME),
        "pool_size": settings.DB_MAX_IDLE_CONNS,
        "max_overflow": max(settings.DB_MAX_OPEN_CONNS - settings.DB_MAX_IDLE_CONNS, 0),
        "connect_args": connect_args,
    }
    kwargs.update(overrides)
    return create_engine(url, **kwargs)


def make_session_factory(bind):
    return sessionmaker(autocommit=False, autoflush=False, bind=bind)


engine = make_engine(settings.database_url)

SessionLocal = make_session_factory(engine)
