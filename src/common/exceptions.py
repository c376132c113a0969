import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.common.result import Err, ErrorKind

logger = logging.getLogger(__name__)

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


class OAuthException(Exception):
    def __init__(
        self,
        error: str,
        description: str | None = None,
        status_code: int = 400,
        headers: dict | None = None,
    ):
        self.error = error
        self.description = description
        self.status_code = status_code
        self.headers = headers or {}

    @classmethod
    def from_err(cls, err: Err, headers: dict | None = None) -> "OAuthException":
        return cls(
            error=err.kind.value,
            description=err.description,
            status_code=err.kind.status_code,
            headers=headers,
        )


class AppException(Exception):
    def __init__(
        self,
        message: str,
        status_code: int = 400,
        headers: dict | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.headers = headers or {}


class StoreUnavailable(Exception):
    """The persistent store timed out or failed; surfaced as HTTP 503."""


def attach_exception_handlers(app: FastAPI):

    @app.exception_handler(OAuthException)
    async def oauth_exception_handler(request: Request, exc: OAuthException):
        body = {"error": exc.error}

        if exc.description:
            body["error_description"] = exc.description

        return JSONResponse(
            status_code=exc.status_code,
            content=body,
            headers=exc.headers,
        )

    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "status": False,
                "message": exc.message,
            },
            headers=exc.headers
        )

    @app.exception_handler(StoreUnavailable)
    async def store_unavailable_handler(request: Request, exc: StoreUnavailable):
        logger.error("Store unavailable while serving %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=503,
            content={
                "error": ErrorKind.TEMPORARILY_UNAVAILABLE.value,
                "error_description": "Service temporarily unavailable",
            },
            headers={**NO_STORE_HEADERS, "Retry-After": "1"},
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": ErrorKind.SERVER_ERROR.value,
                "error_description": "Internal server error",
            },
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        messages = []

        for err in exc.errors():
            loc = err.get("loc", [])
            err_type = err.get("type", "")

            where = loc[0] if len(loc) > 0 else "request"
            field = loc[-1] if len(loc) > 1 else "field"

            if err_type == "missing":
                messages.append(f"missing field '{field}' in {where}")
            else:
                messages.append(f"invalid field '{field}' in {where}")

        # remove duplicates while preserving order
        messages = list(dict.fromkeys(messages))

        return JSONResponse(
            status_code=400,
            content={
                "error": ErrorKind.INVALID_REQUEST.value,
                "error_description": "Invalid request: " + ", ".join(messages),
            },
        )
