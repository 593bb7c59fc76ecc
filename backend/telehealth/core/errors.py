"""Error taxonomy shared by the lifecycle engine, the message relay and the API layer."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ConsultationError(Exception):
    """Base exception for consultation and messaging failures."""

    code = "INTERNAL"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"code": self.code, "detail": self.message}


class Forbidden(ConsultationError):
    """Role or ownership mismatch."""

    code = "FORBIDDEN"
    status_code = status.HTTP_403_FORBIDDEN


class InvalidState(ConsultationError):
    """Status precondition unmet, including invalid transitions."""

    code = "INVALID_STATE"
    status_code = status.HTTP_409_CONFLICT


class NotFound(ConsultationError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class InvalidArgument(ConsultationError):
    """Malformed or self-referential input."""

    code = "INVALID_ARGUMENT"
    status_code = status.HTTP_400_BAD_REQUEST


class Internal(ConsultationError):
    """Storage or downstream failure."""


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ConsultationError)
    async def consultation_error_handler(request: Request, exc: ConsultationError):
        if isinstance(exc, Internal):
            logger.error(f"Internal error on {request.url.path}: {exc.message}")
        else:
            logger.info(
                f"Rejected {request.method} {request.url.path}: {exc.code} - {exc.message}"
            )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
