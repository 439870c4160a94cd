"""
Error Handlers - 例外を {code, message, details} のレスポンスに変換する
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.core.errors import AppError, InternalError, InvalidInputError

logger = logging.getLogger(__name__)


def _field_of(error: dict) -> str:
    loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
    return ".".join(loc)


async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("%s %s -> %s %s", request.method, request.url.path, exc, exc.details,
                     exc_info=exc.__cause__ is not None)
    else:
        logger.warning("%s %s -> %s %s", request.method, request.url.path, exc, exc.details)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    field = _field_of(errors[0]) if errors else ""
    message = errors[0].get("msg") if errors else None
    return await app_error_handler(request, InvalidInputError(field, message))


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("%s %s -> unhandled error", request.method, request.url.path)
    error = InternalError()
    return JSONResponse(error.to_dict(), status_code=error.status_code)


def register_error_handlers(app: FastAPI):
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
