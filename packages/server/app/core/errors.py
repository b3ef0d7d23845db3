"""
Verification error taxonomy and the FastAPI handlers that render it.

Every error leaves the API as ``{statusCode, message, error, data?}`` where
``error`` is a stable machine-checkable code.
"""

from __future__ import annotations

from typing import Any, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException
from starlette.responses import JSONResponse

log = structlog.get_logger()


class VerificationError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, *, data: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.data = data


class ValidationFailed(VerificationError):
    status_code = 400
    code = "validation_error"


class SubmissionConflict(VerificationError):
    """The user's latest record blocks a new submission."""
    status_code = 409
    code = "conflict"


class NotFound(VerificationError):
    status_code = 404
    code = "not_found"


class InvalidState(VerificationError):
    status_code = 400
    code = "invalid_state"


class PreconditionFailed(VerificationError):
    status_code = 400
    code = "precondition_failed"


class UploadFailed(VerificationError):
    status_code = 502
    code = "upload_error"


class DependencyFailed(VerificationError):
    status_code = 502
    code = "dependency_error"


class GenerationExhausted(VerificationError):
    status_code = 500
    code = "generation_exhausted"


def error_body(
    status_code: int, message: str, code: Optional[str] = None, data: Any = None
) -> dict[str, Any]:
    body: dict[str, Any] = {"statusCode": status_code, "message": message}
    if code:
        body["error"] = code
    if data is not None:
        body["data"] = jsonable_encoder(data, by_alias=True)
    return body


async def _verification_error_handler(request: Request, exc: VerificationError) -> JSONResponse:
    log.info(
        "request.rejected",
        path=request.url.path,
        code=exc.code,
        status=exc.status_code,
        detail=exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.status_code, exc.message, exc.code, exc.data),
    )


async def _http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.status_code, str(exc.detail), "http_error"),
        headers=getattr(exc, "headers", None),
    )


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg')}" if location else str(first.get("msg", "Invalid request"))
    return JSONResponse(
        status_code=400,
        content=error_body(
            400,
            message,
            ValidationFailed.code,
            {"errors": [{"loc": e.get("loc"), "msg": e.get("msg"), "type": e.get("type")} for e in errors]},
        ),
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("request.failed", path=request.url.path)
    return JSONResponse(
        status_code=500,
        content=error_body(500, "Server error", "internal_error"),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(VerificationError, _verification_error_handler)
    app.add_exception_handler(HTTPException, _http_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
