import logging
import traceback
from typing import Any, Dict

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError

from .exceptions import BaseAPIException, InternalServerError, TransientError

logger = logging.getLogger("loyaltyapi")


def _request_context(request: Request) -> Dict[str, Any]:
    client = request.client.host if request.client else "-"
    return {
        "method": request.method,
        "url": str(request.url),
        "client": client,
        "request_id": getattr(request.state, "request_id", "-"),
    }


def _prefix(kind: str, ctx: Dict[str, Any]) -> str:
    return f"[{kind}] [{ctx['request_id']}] {ctx['method']} {ctx['url']} from {ctx['client']}"


async def handle_base_api_exception(request: Request, exc: BaseAPIException):
    ctx = _request_context(request)
    message = f"{_prefix(type(exc).__name__, ctx)} -> {exc.status_code} {exc.error_code}: {exc.message}"
    if exc.status_code >= 500:
        logger.error(message)
    else:
        # 잔액 부족, 이미 처리된 신고 등은 정상적인 거절
        logger.warning(message)
    return JSONResponse(status_code=exc.status_code, content=exc.detail)  # type: ignore[arg-type]


async def handle_http_exception(request: Request, exc: HTTPException):
    ctx = _request_context(request)
    error_msg = f"{_prefix('HTTPException', ctx)} -> {exc.status_code}: {exc.detail}"

    if exc.status_code >= 500:
        tb_str = "".join(traceback.format_tb(exc.__traceback__))
        logger.error(f"{error_msg}\n\nStack Trace:\n{tb_str}")
    else:
        logger.warning(error_msg)

    if isinstance(exc.detail, dict) and "error" in exc.detail:
        content = exc.detail
    else:
        content = {
            "success": False,
            "error": {
                "code": "HTTP_ERROR",
                "message": str(exc.detail),
                "details": {},
            },
        }
    return JSONResponse(status_code=exc.status_code, content=content)


async def handle_validation_error(request: Request, exc: RequestValidationError):
    ctx = _request_context(request)
    logger.warning(f"{_prefix('ValidationError', ctx)} -> 422: {exc.errors()}")
    content = {
        "success": False,
        "error": {
            "code": "VALIDATION_001",
            "message": "Validation failed",
            "details": {"errors": jsonable_errors(exc)},
        },
    }
    return JSONResponse(status_code=422, content=content)


def jsonable_errors(exc: RequestValidationError):
    """pydantic 오류의 ctx 에 예외 객체가 들어있을 수 있어 문자열로 변환"""
    errors = []
    for error in exc.errors():
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {key: str(value) for key, value in error["ctx"].items()}
        errors.append(error)
    return errors


async def handle_storage_error(request: Request, exc: Exception):
    """트랜잭션 밖(조회 경로)에서 올라온 스토리지 타임아웃/연결 오류"""
    ctx = _request_context(request)
    logger.error(f"{_prefix('StorageError', ctx)} -> 503: {type(exc).__name__}: {exc}")
    transient = TransientError(details={"cause": type(exc).__name__})
    return JSONResponse(status_code=transient.status_code, content=transient.detail)  # type: ignore[arg-type]


async def handle_unexpected_error(request: Request, exc: Exception):
    ctx = _request_context(request)

    tb_str = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    logger.error(
        f"\n{'=' * 80}\n"
        f"{_prefix('Unhandled Error', ctx)}\n"
        f"Exception Type: {type(exc).__name__}\n"
        f"Exception Message: {str(exc)}\n\n"
        f"Full Stack Trace:\n{tb_str}"
        f"{'=' * 80}"
    )

    internal = InternalServerError()
    return JSONResponse(status_code=internal.status_code, content=internal.detail)  # type: ignore[arg-type]


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BaseAPIException, handle_base_api_exception)
    app.add_exception_handler(HTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(OperationalError, handle_storage_error)
    app.add_exception_handler(PoolTimeoutError, handle_storage_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
