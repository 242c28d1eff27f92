"""Domain errors for the Dayplan API.

Services raise these; `main.py` maps them to JSON responses:

- InvalidInputError -> 400
- ForbiddenError    -> 403
- NotFoundError     -> 404
- ConflictError     -> 409
- StorageError      -> 503

Constraint infeasibility (over budget, exit before plan start) is not an
error: it is reported as a `warnings` list on the result.
"""

from typing import Any, Optional


class DayplanError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, detail: str, **extra: Any):
        super().__init__(detail)
        self.detail = detail
        self.extra = extra

    def to_dict(self) -> dict:
        return {"detail": self.detail, "code": self.code, **self.extra}


class InvalidInputError(DayplanError):
    status_code = 400
    code = "invalid_input"


class ForbiddenError(DayplanError):
    status_code = 403
    code = "forbidden"


class NotFoundError(DayplanError):
    status_code = 404
    code = "not_found"


class ConditionNotFoundError(NotFoundError, KeyError):
    def __init__(self, condition_id: str):
        super().__init__(f"Gate condition '{condition_id}' not found", condition_id=condition_id)
        self.condition_id = condition_id

    def __str__(self) -> str:
        return self.detail


class ConflictError(DayplanError):
    status_code = 409
    code = "conflict"


class StorageError(DayplanError):
    status_code = 503
    code = "storage_error"

    def __init__(self, detail: str, cause: Optional[BaseException] = None, **extra: Any):
        super().__init__(detail, **extra)
        self.cause = cause
