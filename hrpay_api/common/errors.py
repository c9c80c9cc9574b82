# hrpay_api/common/errors.py
from werkzeug.exceptions import HTTPException
from sqlalchemy.exc import IntegrityError
from hrpay_api.common.http import fail


class APIError(Exception):
    """Custom API Error class."""
    status_code = 400
    code = "BAD_REQUEST"

    def __init__(self, message, code=None, status_code=None, payload=None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload or {}


# ---- validation ----
class ValidationError(APIError):
    status_code = 422
    code = "VALIDATION_ERROR"


class NotFoundError(APIError):
    status_code = 404
    code = "NOT_FOUND"


# ---- state conflicts (caller decides: retry / ignore / escalate) ----
class StateConflict(APIError):
    status_code = 409
    code = "STATE_CONFLICT"


class DuplicateClockIn(StateConflict):
    code = "DUPLICATE_CLOCK_IN"


class NoOpenRecord(StateConflict):
    code = "NO_OPEN_RECORD"


class DuplicateActiveRequest(StateConflict):
    code = "DUPLICATE_ACTIVE_REQUEST"


class DuplicatePeriod(StateConflict):
    code = "DUPLICATE_PERIOD"


class AlreadySettled(StateConflict):
    code = "ALREADY_SETTLED"


class InvalidTransition(StateConflict):
    code = "INVALID_TRANSITION"


class BatchValidationError(StateConflict):
    """Raised before any commit; payload["failures"] lists every offending line."""
    code = "BATCH_INVALID"

    def __init__(self, message, failures):
        super().__init__(message, payload={"failures": failures})
        self.failures = failures


# ---- fatal: finalized payroll is never mutated ----
class FinalizedRecordError(APIError):
    status_code = 423
    code = "FINALIZED_IMMUTABLE"


def register_error_handlers(app):
    @app.errorhandler(APIError)
    def _api_error(e: APIError):
        if e.status_code >= 500:
            app.logger.exception(e)
        return fail(e.message, status=e.status_code, code=e.code, detail=e.payload or None)

    @app.errorhandler(HTTPException)
    def _http(e: HTTPException):
        return fail(e.description or e.name, status=e.code or 500)

    @app.errorhandler(IntegrityError)
    def _dup(e: IntegrityError):
        # composite-key races surface here when the app-level pre-check lost
        return fail("Duplicate or FK constraint failed", status=409, code="CONSTRAINT_ERROR",
                    detail=str(e.orig) if getattr(e, "orig", None) else str(e))

    @app.errorhandler(Exception)
    def _500(e: Exception):
        app.logger.exception(e)
        return fail("Internal server error", status=500)
