"""
Domain error taxonomy for the pass lifecycle.

Every error carries an HTTP status and a stable ``kind`` so callers can tell
them apart. The FastAPI handler in ``backend.main`` renders them as
``{"detail": message, "kind": kind}``.
"""


class GatepassError(Exception):
    status_code = 400
    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(GatepassError):
    status_code = 404
    kind = "not_found"


class InvalidToken(NotFound):
    kind = "invalid_token"


class Forbidden(GatepassError):
    status_code = 403
    kind = "forbidden"


class InvalidTransition(GatepassError):
    status_code = 409
    kind = "invalid_transition"


class InvalidState(GatepassError):
    status_code = 400
    kind = "invalid_state"


class Conflict(GatepassError):
    status_code = 409
    kind = "conflict"


class ValidationError(GatepassError):
    status_code = 422
    kind = "validation_error"
