import logging
from typing import Any, Dict, Mapping, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

GENERIC_REJECTION_MESSAGE = "The operation could not be completed."


class BusinessRuleRejection(Exception):
    """A procedure refused the request and explained why."""

    def __init__(self, error: Optional[str] = None, code: Optional[str] = None, status_code: int = 400) -> None:
        super().__init__(error or GENERIC_REJECTION_MESSAGE)
        self.error = error or GENERIC_REJECTION_MESSAGE
        self.code = code
        self.status_code = status_code

    @classmethod
    def from_result(cls, result: Mapping[str, Any], status_code: int = 400) -> "BusinessRuleRejection":
        return cls(error=result.get("error"), code=result.get("code"), status_code=status_code)


def ensure_success(result: Mapping[str, Any], status_code: int = 400) -> Mapping[str, Any]:
    """Pass a successful procedure payload through, raise on a rejected one."""
    if not result.get("success"):
        raise BusinessRuleRejection.from_result(result, status_code=status_code)
    return result


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:  # type: ignore[override]
        return JSONResponse(
            status_code=422,
            content={
                "detail": "Validation failed.",
                "errors": [
                    {key: value for key, value in error.items() if key != "ctx"}
                    for error in exc.errors()
                ],
                "path": str(request.url),
            },
        )

    @app.exception_handler(BusinessRuleRejection)
    async def business_rule_handler(request: Request, exc: BusinessRuleRejection) -> JSONResponse:  # type: ignore[override]
        payload: Dict[str, Any] = {"success": False, "error": exc.error, "path": str(request.url)}
        if exc.code:
            payload["code"] = exc.code
        return JSONResponse(status_code=exc.status_code, content=payload)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:  # type: ignore[override]
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error.",
                "path": str(request.url),
            },
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:  # type: ignore[override]
        payload: Dict[str, Any] = {"detail": exc.detail or "HTTP error.", "path": str(request.url)}
        if exc.headers:
            payload["headers"] = exc.headers
        return JSONResponse(status_code=exc.status_code, content=payload, headers=exc.headers)
