from typing import Any, Optional

from fastapi import HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from healthwallet.middleware.tracing import TRACE_ID_CTX_VAR


# ---------- Domain errors ----------
class DomainError(Exception):
    """Base for errors the record service raises on purpose."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "BAD_REQUEST"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class RecordNotFound(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "RECORD_NOT_FOUND"

    def __init__(self, record_id: str):
        super().__init__("Record not found", {"record_id": record_id})


class InvalidTransition(DomainError):
    status_code = status.HTTP_409_CONFLICT
    code = "INVALID_TRANSITION"

    def __init__(self, record_id: str, current: str, target: str):
        super().__init__(
            f"Cannot move record from '{current}' to '{target}'",
            {"record_id": record_id, "status": current, "target": target},
        )
        self.current = current
        self.target = target


class ConcurrencyConflict(DomainError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONCURRENCY_CONFLICT"

    def __init__(self, record_id: str, expected_version: Optional[int] = None):
        super().__init__(
            "Record was modified by another request; reload and retry",
            {"record_id": record_id, "expected_version": expected_version},
        )


class ScoringPreconditionError(DomainError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "SCORING_PRECONDITION_FAILED"


class ExtractionError(Exception):
    """The extraction provider could not produce usable biomarkers.

    Never surfaces over HTTP: the pipeline turns it into a failed record.
    """


# ---------- Envelope ----------
def status_to_code(status_code: int) -> str:
    mapping = {
        400: "BAD_REQUEST",
        401: "UNAUTHORIZED",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        409: "CONFLICT",
        413: "PAYLOAD_TOO_LARGE",
        415: "UNSUPPORTED_MEDIA_TYPE",
        422: "UNPROCESSABLE_ENTITY",
        429: "TOO_MANY_REQUESTS",
        500: "INTERNAL_SERVER_ERROR",
    }
    return mapping.get(status_code, f"HTTP_{status_code}")


def envelope(status_code: int, code: str, message: str, details: Any = None, headers=None) -> JSONResponse:
    body = {"code": code, "message": message, "trace_id": TRACE_ID_CTX_VAR.get()}
    if details is not None:
        body["details"] = jsonable_encoder(details)
    return JSONResponse(status_code=status_code, content=body, headers=headers)


async def handle_http_exception(request: Request, exc: HTTPException):
    detail: Any = exc.detail
    message = detail if isinstance(detail, str) else "HTTP error"
    return envelope(
        exc.status_code,
        status_to_code(exc.status_code),
        message,
        detail,
        headers=getattr(exc, "headers", None),
    )


async def handle_domain_error(request: Request, exc: DomainError):
    return envelope(exc.status_code, exc.code, exc.message, exc.details)


async def handle_validation_error(request: Request, exc: RequestValidationError):
    return envelope(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "UNPROCESSABLE_ENTITY",
        "Request validation failed",
        exc.errors(),
    )


async def handle_unhandled_exception(request: Request, exc: Exception):
    return envelope(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "INTERNAL_SERVER_ERROR",
        "An unexpected error occurred",
        str(exc),
    )
