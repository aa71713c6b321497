"""Application error kinds and their HTTP rendering."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from app.logging_config import get_logger

logger = get_logger("errors")


class AppError(Exception):
    status_code = 500
    kind = "internal_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class DatabaseError(AppError):
    status_code = 500
    kind = "database_error"


class NotFoundError(AppError):
    status_code = 404
    kind = "not_found"


class ValidationError(AppError):
    status_code = 400
    kind = "validation_error"


class UnauthorizedError(AppError):
    status_code = 401
    kind = "unauthorized"


class ForbiddenError(AppError):
    status_code = 403
    kind = "forbidden"


class InternalError(AppError):
    status_code = 500
    kind = "internal_error"


class BadRequestError(AppError):
    status_code = 400
    kind = "bad_request"


class ConflictError(AppError):
    status_code = 409
    kind = "conflict"


def error_body(kind: str, message: str) -> dict:
    return {"error": kind, "message": message}


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "Request failed",
            extra={"context": {"path": request.url.path, "kind": exc.kind, "error": exc.message}},
        )
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.kind, exc.message))


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error(
        "Database error",
        extra={"context": {"path": request.url.path, "error": str(exc)}},
    )
    return JSONResponse(status_code=500, content=error_body(DatabaseError.kind, "Database error"))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
