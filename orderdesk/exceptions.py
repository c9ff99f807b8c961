import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from orderdesk.errors import CheckoutError, InvalidRequest
from orderdesk.log import get_correlation_id

logger = logging.getLogger(__name__)

GENERIC_ERROR = "Internal server error"


async def checkout_error_handler(request: Request, exc: CheckoutError) -> JSONResponse:
    correlation_id = get_correlation_id()
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc, exc_info=exc)
        detail = str(exc) if request.app.state.settings.debug else exc.public_message
    else:
        logger.info("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
        detail = exc.public_message

    content = {"detail": detail, "correlation_id": correlation_id}
    if isinstance(exc, InvalidRequest) and exc.errors:
        content["errors"] = exc.errors
    return JSONResponse(status_code=exc.status_code, content=content)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        errors.append(f"{field}: {error.get('msg')}" if field else str(error.get("msg")))
    return await checkout_error_handler(request, InvalidRequest(errors=errors))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": GENERIC_ERROR, "correlation_id": get_correlation_id()},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CheckoutError, checkout_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
