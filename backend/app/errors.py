import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.exceptions import DomainException
from .core.request_context import REQUEST_ID_HEADER, get_request_id

logger = logging.getLogger(__name__)


def _code_from_status(status_code: int) -> str:
    mapping = {
        400: "BAD_REQUEST",
        401: "UNAUTHORIZED",
        402: "PAYMENT_DECLINED",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        409: "CONFLICT",
        500: "INTERNAL_SERVER_ERROR",
        502: "PAYMENT_PROCESSOR_ERROR",
    }
    return mapping.get(status_code, "ERROR")


def _error_body(message: str, code: str, details: Optional[Any] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"error": message, "code": code}
    if details:
        body["details"] = jsonable_encoder(details)
    return body


def _parse_detail(detail: Any) -> tuple[Optional[str], Optional[str], Optional[Any]]:
    if isinstance(detail, dict):
        code = detail.get("code") if isinstance(detail.get("code"), str) else None
        message = detail.get("message") or detail.get("error") or detail.get("detail")
        detail_text = message if isinstance(message, str) else None
        details = detail.get("details") or detail.get("errors")
        return detail_text, code, details
    if isinstance(detail, str):
        return detail, None, None
    if detail is None:
        return None, None, None
    return str(detail), None, None


def _response(status_code: int, body: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    merged = dict(headers or {})
    request_id = get_request_id()
    if request_id:
        merged.setdefault(REQUEST_ID_HEADER, request_id)
    return JSONResponse(body, status_code=status_code, headers=merged or None)


def register_error_handlers(app: FastAPI) -> None:
    """Render every error as {"error": message, "code": CODE, "details"?}."""

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        detail_text, code, details = _parse_detail(exc.detail)
        body = _error_body(
            detail_text or _code_from_status(exc.status_code).replace("_", " ").capitalize(),
            code or _code_from_status(exc.status_code),
            details,
        )
        return _response(exc.status_code, body, exc.headers)

    @app.exception_handler(StarletteHTTPException)
    async def starlette_http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        detail_text, code, details = _parse_detail(exc.detail)
        body = _error_body(
            detail_text or _code_from_status(exc.status_code).replace("_", " ").capitalize(),
            code or _code_from_status(exc.status_code),
            details,
        )
        return _response(exc.status_code, body, getattr(exc, "headers", None))

    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
        return _response(exc.status_code, _error_body(exc.message, exc.code, exc.details))

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        body = _error_body(
            "Invalid request",
            "VALIDATION_ERROR",
            {"errors": jsonable_encoder(exc.errors())},
        )
        return _response(400, body)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(
            "unhandled_exception",
            extra={"path": request.url.path, "method": request.method},
        )
        return _response(500, _error_body("Internal server error", "INTERNAL_SERVER_ERROR"))
