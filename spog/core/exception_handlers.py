import logging

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder

from spog.core.errors import InventoryError, ItemNotFound, ValidationFailure
from spog.schemas.response import ErrorDetail, ErrorResponse

log = logging.getLogger(__name__)


def _error_body(code: str, message, details=None):
    """Error envelope with a fresh request id; ``details`` is left out when empty."""
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, details=details))
    return body.model_dump(exclude_none=True)


# ----------- Exception Handlers (called by FastAPI) -----------

def http_exception_handler(request: Request, exc: HTTPException):
    """Handles exceptions raised by HTTPException (e.g., 404, 400)."""
    return JSONResponse(status_code=exc.status_code, content=_error_body("http_error", exc.detail))


def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handles Pydantic validation errors (422 Unprocessable Entity)."""
    body = _error_body("validation_error", "Invalid input data", jsonable_encoder(exc.errors()))
    return JSONResponse(status_code=422, content=body)


def inventory_error_handler(request: Request, exc: InventoryError):
    """Domain errors that escaped a router: bad input is 400, a missing item 404, the rest 500."""
    if isinstance(exc, ValidationFailure):
        return JSONResponse(status_code=400, content=_error_body("validation_failure", str(exc), exc.fields))
    if isinstance(exc, ItemNotFound):
        return JSONResponse(status_code=404, content=_error_body("not_found", str(exc)))
    log.error(f"Inventory error on path {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content=_error_body("inventory_error", "Inventory operation failed"))


def generic_exception_handler(request: Request, exc: Exception):
    """Handles all unhandled exceptions (500 Internal Server Error)."""
    # Log the full traceback for debugging purposes
    log.error(f"Unhandled exception on path: {request.url.path}", exc_info=exc)
    return JSONResponse(status_code=500, content=_error_body("server_error", "Internal Server Error"))


# ----------- Registration Function -----------

def setup_exception_handlers(app: FastAPI):
    """Registers all custom exception handlers with the FastAPI application."""
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(InventoryError, inventory_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    return app
