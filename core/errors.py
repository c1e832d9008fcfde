"""
Domain error taxonomy.

Every expected, caller-recoverable failure of the order and delivery workflows
is a ``DomainError`` carrying a stable ``kind`` and the HTTP status it maps to.
Routes never build these responses by hand: the handlers registered in
``register_error_handlers`` turn them into ``{"error": kind, "detail": message}``.
"""
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class DomainError(Exception):
    kind: str = "DomainError"
    status_code: int = status.HTTP_400_BAD_REQUEST
    default_message: str = "Request could not be processed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(DomainError):
    kind = "NotFound"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class Unauthenticated(DomainError):
    kind = "Unauthenticated"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Not authenticated"


class Forbidden(DomainError):
    kind = "Forbidden"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Access denied"


class InvalidStatus(DomainError):
    kind = "InvalidStatus"
    default_message = "Invalid status value"


class InvalidTransition(DomainError):
    kind = "InvalidTransition"
    default_message = "Status transition not allowed"


class InvalidAction(DomainError):
    kind = "InvalidAction"
    default_message = "Unknown action"


class AlreadyAssigned(DomainError):
    kind = "AlreadyAssigned"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Shipment not found or already assigned"


class AlreadyTerminal(DomainError):
    kind = "AlreadyTerminal"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Record is in a terminal state"


class DriverUnavailable(DomainError):
    kind = "DriverUnavailable"
    default_message = "Driver is not available"


class OutOfStock(DomainError):
    kind = "OutOfStock"
    default_message = "Insufficient stock"


class InvalidRequest(DomainError):
    kind = "InvalidRequest"
    default_message = "Invalid request"


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(DomainError)
    async def _domain_error(request: Request, exc: DomainError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.kind, "detail": exc.message})

    @app.exception_handler(SQLAlchemyError)
    async def _persistence_error(request: Request, exc: SQLAlchemyError):
        logger.exception("Persistence failure on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "InternalError", "detail": "Internal server error"},
        )
