from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from signing_desk.core.errors import SigningError
from signing_desk.core.logging import get_logger
from signing_desk.schemas.common import ErrorDetail, ErrorResponse

logger = get_logger(__name__)

STATUS_BY_CODE = {
    "validation_error": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "not_found": status.HTTP_404_NOT_FOUND,
    "forbidden": status.HTTP_403_FORBIDDEN,
    "invalid_state": status.HTTP_409_CONFLICT,
    "provider_error": status.HTTP_502_BAD_GATEWAY,
    "provider_unavailable": status.HTTP_503_SERVICE_UNAVAILABLE,
    "webhook_auth": status.HTTP_401_UNAUTHORIZED,
    "concurrent_update": status.HTTP_409_CONFLICT,
}


def error_response(status_code: int, code: str, message: str, details: dict | None = None) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, details=details or None))
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


async def signing_error_handler(request: Request, exc: SigningError) -> JSONResponse:
    status_code = STATUS_BY_CODE.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR)
    log = logger.warning if status_code < 500 else logger.error
    log("request.failed", path=request.url.path, code=exc.code, error=exc.message)
    return JSONResponse(status_code=status_code, content={"error": exc.to_dict()})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(part) for part in error.get("loc", ())), "message": error.get("msg")}
        for error in exc.errors()
    ]
    return error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "validation_error",
        "Request validation failed",
        {"errors": errors},
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = "unauthorized" if exc.status_code == status.HTTP_401_UNAUTHORIZED else "http_error"
    response = error_response(exc.status_code, code, str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


def register_exception_handlers(application: FastAPI) -> None:
    application.add_exception_handler(SigningError, signing_error_handler)
    application.add_exception_handler(RequestValidationError, request_validation_handler)
    application.add_exception_handler(StarletteHTTPException, http_exception_handler)
