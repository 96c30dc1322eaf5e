"""错误响应 -- 把 Core 异常映射为统一的 {"error": {...}} 信封"""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from mobzap.core.exceptions import (
    MalformedPayload,
    MobZapError,
    NotCancellable,
    NotFound,
    QuotaExceeded,
    TaskStatusConflict,
    UnknownCategory,
)
from starlette.responses import JSONResponse

log = structlog.get_logger()

STATUS_BY_ERROR: dict[type[MobZapError], int] = {
    MalformedPayload: 400,
    UnknownCategory: 400,
    QuotaExceeded: 402,
    NotFound: 404,
    NotCancellable: 409,
    TaskStatusConflict: 409,
}


def error_response(status_code: int, code: str, message: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message, **extra}},
    )


async def mobzap_error_handler(request: Request, exc: MobZapError) -> JSONResponse:
    status_code = 500
    for error_type, code in STATUS_BY_ERROR.items():
        if isinstance(exc, error_type):
            status_code = code
            break
    log.info("request_rejected", code=exc.code, status_code=status_code)
    if isinstance(exc, MalformedPayload) and exc.errors:
        return error_response(status_code, exc.code, exc.message, details=exc.errors)
    return error_response(status_code, exc.code, exc.message)


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    details = [
        {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return error_response(400, "MALFORMED_REQUEST", "Request validation failed", details=details)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MobZapError, mobzap_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
