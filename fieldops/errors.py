"""
Scheduling engine error taxonomy.
Services raise these; the HTTP layer renders them via register_exception_handlers.
"""
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class SchedulingError(Exception):
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> dict:
        return {"error": self.detail}


class NotFound(SchedulingError):
    """Job, crew, worker or template missing, or owned by another provider."""
    status_code = 404


class Forbidden(SchedulingError):
    status_code = 403


class InvalidInput(SchedulingError):
    status_code = 400


class InvalidState(SchedulingError):
    status_code = 400


class DependencyFailure(SchedulingError):
    """Store or notification channel unavailable."""
    status_code = 503


class SchedulingConflict(SchedulingError):
    """
    Conflicts found and no override requested.
    Carries the conflicts so the caller can show them or retry with an override.
    """
    status_code = 409

    def __init__(self, detail: str, conflicts: Optional[List] = None, message: str = ""):
        super().__init__(detail)
        self.conflicts = list(conflicts or [])
        self.message = message

    def to_dict(self) -> dict:
        return {
            "error": self.detail,
            "conflicts": [c.model_dump(mode="json") for c in self.conflicts],
            "message": self.message,
            "requires_override": True,
        }


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(SchedulingError)
    async def _scheduling_error_handler(request: Request, exc: SchedulingError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
