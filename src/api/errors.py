# src/api/errors.py

import logging

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.domain.exceptions import EnotempoError, InvalidToken


logger = logging.getLogger(__name__)


def error_body(code: str, message: str) -> dict:
    return {"error": code, "message": message}


async def domain_error_handler(request: Request, exc: EnotempoError) -> JSONResponse:
    if isinstance(exc, InvalidToken):
        # The reason stays server-side; clients only see the generic message.
        logger.info("Rejected token on %s: %s", request.url.path, exc.reason)
    elif exc.status_code >= 500:
        logger.error("Domain error on %s: %s", request.url.path, exc.code)
    else:
        logger.info("Domain error on %s: %s", request.url.path, exc.code)
    return JSONResponse(status_code=exc.status_code, content=exc.payload())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    logger.info("Validation error on %s: %s", request.url.path, len(errors))
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{field}: {first.get('msg', 'invalid')}" if field else "Dati non validi"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body("VALIDATION_ERROR", message),
    )


async def general_500_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception on %s", request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("INTERNAL_ERROR", "Errore interno"),
    )


EXCEPTION_HANDLERS = {
    EnotempoError: domain_error_handler,
    RequestValidationError: validation_error_handler,
    Exception: general_500_exception_handler,
}


def register_exception_handlers(app) -> None:
    for exception_class, handler in EXCEPTION_HANDLERS.items():
        app.add_exception_handler(exception_class, handler)
