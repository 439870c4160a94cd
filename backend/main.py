import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import admissions, cache_admin, departments, filter_options, majors, security, subjects, universities
from app.api.errors import register_error_handlers
from app.core.config import get_settings
from app.core.database import Base, engine
from app.core.logging_config import setup_logging
from app.core.security import BodyLimitMiddleware, csrf_store, make_request_guard
from app.services.cache import read_cache

# テーブル作成のためにモデルを読み込む
from app.models import filter_option, university  # noqa: F401

settings = get_settings()
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger("main")

# テーブルを作成
Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("[Startup] %s %s (%s)", settings.PROJECT_NAME, settings.VERSION, settings.ENV)
    read_cache.start_cleanup(settings.CACHE_CLEANUP_INTERVAL)
    yield
    read_cache.stop_cleanup()
    engine.dispose()
    logger.info("[Shutdown] done")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    openapi_url=f"{settings.API_PREFIX}/openapi.json",
    lifespan=lifespan,
)

app.middleware("http")(make_request_guard(csrf_store))
app.add_middleware(BodyLimitMiddleware)

# Set all CORS enabled origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=[settings.CSRF_TOKEN_HEADER],
)

register_error_handlers(app)

# ルーターを登録
app.include_router(universities.router, prefix=settings.API_PREFIX)
app.include_router(departments.router, prefix=settings.API_PREFIX)
app.include_router(majors.router, prefix=settings.API_PREFIX)
app.include_router(admissions.router, prefix=settings.API_PREFIX)
app.include_router(subjects.router, prefix=settings.API_PREFIX)
app.include_router(filter_options.router, prefix=settings.API_PREFIX)
app.include_router(cache_admin.router, prefix=settings.API_PREFIX)
app.include_router(security.router)


@app.get("/")
def root():
    return {
        "message": "Welcome to University Exam API",
        "docs": "/docs",
        "status": "running",
    }


@app.get(f"{settings.API_PREFIX}/health")
def health():
    return {"status": "ok", "version": settings.VERSION, "cache": read_cache.stats()}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=settings.PORT, reload=settings.ENV == "development")
