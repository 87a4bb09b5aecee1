"""Typed tracker errors.

Stateful operations raise these; the app maps them to JSON responses with a
stable ``error_code``. Pure computations never raise them.
"""

from __future__ import annotations


class TrackerError(Exception):
    status_code: int = 400
    error_code: str = "TRACKER_ERROR"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFound(TrackerError):
    status_code = 404
    error_code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: object | None = None):
        detail = f"{resource} not found" if identifier is None else f"{resource} not found: {identifier}"
        super().__init__(detail)
        self.resource = resource


class Expired(TrackerError):
    status_code = 410
    error_code = "EXPIRED"


class AlreadyExists(TrackerError):
    status_code = 409
    error_code = "ALREADY_EXISTS"


class AlreadyMember(AlreadyExists):
    error_code = "ALREADY_MEMBER"

    def __init__(self, detail: str = "Already a member of this group"):
        super().__init__(detail)


class Unauthorized(TrackerError):
    status_code = 403
    error_code = "UNAUTHORIZED"


class ValidationError(TrackerError):
    status_code = 422
    error_code = "VALIDATION_ERROR"

    def __init__(self, detail: str, field: str | None = None):
        super().__init__(detail)
        if field:
            self.error_code = f"VALIDATION_ERROR_{field.upper()}"


class ExhaustedRetries(TrackerError):
    status_code = 503
    error_code = "EXHAUSTED_RETRIES"

    def __init__(self, namespace: str, attempts: int):
        super().__init__(f"Could not allocate a unique {namespace} code after {attempts} attempts")
        self.attempts = attempts
