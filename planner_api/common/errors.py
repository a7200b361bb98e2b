# planner_api/common/errors.py
from __future__ import annotations

from datetime import date

from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from planner_api.common.http import error_response, fail


class APIError(Exception):
    """Custom API Error class."""
    def __init__(self, code, message, status_code=400, payload=None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.payload = payload


class EngineError(APIError):
    """
    Base for every scheduling-engine failure.

    Carries a stable `kind` plus the offending (employee_id, date, slot) so the
    caller can render a precise message. Bulk failures also carry `index`
    (position of the failing item in the submitted batch).
    """
    kind = "EngineError"
    status_code = 400

    def __init__(self, message: str, *, employee_id: int | None = None,
                 day: date | None = None, slot: str | None = None,
                 index: int | None = None, **extra):
        self.employee_id = employee_id
        self.day = day
        self.slot = slot
        self.index = index
        self.extra = extra
        super().__init__(self.kind, message, status_code=type(self).status_code,
                         payload=self._payload())

    def _payload(self) -> dict:
        p = {}
        if self.employee_id is not None:
            p["employee_id"] = self.employee_id
        if self.day is not None:
            p["date"] = self.day.isoformat()
        if self.slot is not None:
            p["slot"] = self.slot
        if self.index is not None:
            p["index"] = self.index
        p.update(self.extra)
        return p

    def at_index(self, index: int) -> "EngineError":
        self.index = index
        self.payload = self._payload()
        return self

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, **self._payload()}


class CapacityExceeded(EngineError):
    kind = "CapacityExceeded"
    status_code = 409


class AbsenceConflict(EngineError):
    kind = "AbsenceConflict"
    status_code = 409


class EmployeeInactive(EngineError):
    kind = "EmployeeInactive"
    status_code = 422


class NotFound(EngineError):
    kind = "NotFound"
    status_code = 404


class Forbidden(EngineError):
    kind = "Forbidden"
    status_code = 403


class InvalidDate(EngineError):
    kind = "InvalidDate"
    status_code = 422


class InvalidRequest(EngineError):
    kind = "InvalidRequest"
    status_code = 422


class InsufficientAllocation(EngineError):
    kind = "InsufficientAllocation"
    status_code = 422


class EngineUnavailable(EngineError):
    kind = "EngineUnavailable"
    status_code = 503


def register_error_handlers(app):
    @app.errorhandler(APIError)
    def _api_error(e: APIError):
        return error_response(e)

    @app.errorhandler(SQLAlchemyError)
    def _store(e: SQLAlchemyError):
        app.logger.warning("store failure: %s", e)
        return fail("Scheduling store unavailable", status=503, code=EngineUnavailable.kind)

    @app.errorhandler(HTTPException)
    def _http(e: HTTPException):
        return fail(e.description or e.name, status=e.code or 500)

    @app.errorhandler(Exception)
    def _500(e: Exception):
        app.logger.exception(e)
        return fail("Internal server error", status=500)
