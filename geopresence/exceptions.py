import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


def error_payload(message: str, code: Optional[str] = None) -> Dict[str, Any]:
    return {"success": False, "message": message, "code": code}


class PresenceError(Exception):
    status_code: int = 400
    default_code: Optional[str] = None

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None):
        self.message = message
        self.code = code if code is not None else self.default_code
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class ValidationError(PresenceError):
    status_code = 400
    default_code = "validation_error"


class DuplicateUsername(ValidationError):
    status_code = 409
    default_code = "duplicate_username"

    def __init__(self, username: str):
        super().__init__(f"Username '{username}' is already taken")
        self.username = username


class UserNotFound(ValidationError):
    status_code = 404
    default_code = "user_not_found"

    def __init__(self, username: str):
        super().__init__("User not found")
        self.username = username


class InvalidPassword(ValidationError):
    status_code = 401
    default_code = "invalid_password"

    def __init__(self):
        super().__init__("Wrong password")


class AuthError(PresenceError):
    status_code = 401
    default_code = "auth_error"


class InvalidToken(AuthError):
    default_code = "invalid_token"

    def __init__(self, message: str = "Invalid token"):
        super().__init__(message)


class StorageError(PresenceError):
    status_code = 500
    default_code = "storage_error"


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(PresenceError)
    async def _presence_error_handler(_request: Request, exc: PresenceError) -> JSONResponse:
        if isinstance(exc, StorageError):
            logger.error("Storage failure: %s", exc.message)
        return JSONResponse(status_code=exc.status_code, content=error_payload(exc.message, exc.code))

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        content = error_payload("Validation error", "validation_error")
        content["details"] = jsonable_errors(exc)
        return JSONResponse(status_code=422, content=content)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        detail = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return JSONResponse(status_code=exc.status_code, content=error_payload(detail, "http_exception"))

    @app.exception_handler(Exception)
    async def _unhandled_error_handler(_request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception: %s", exc)
        return JSONResponse(status_code=500, content=error_payload("Internal server error", "internal_error"))


def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx may carry the raw exception object, which JSONResponse cannot encode
    return [{k: v for k, v in err.items() if k != "ctx"} for err in exc.errors()]
