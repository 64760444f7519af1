"""
Domain error taxonomy.

Services raise these before mutating anything; the app factory turns them into
JSON responses with a single error handler.
"""
from __future__ import annotations

from typing import Any


class GolfPOIError(Exception):
    status_code = 500
    kind = "error"

    def __init__(self, message: str = "", *, fields: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.fields = dict(fields or {})

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"error": self.kind, "message": self.message}
        if self.fields:
            out["fields"] = self.fields
        return out


class ValidationError(GolfPOIError):
    status_code = 400
    kind = "validation_error"

    def __init__(self, fields: dict[str, str], message: str = "Invalid input.") -> None:
        super().__init__(message, fields=fields)


class NotFound(GolfPOIError):
    status_code = 404
    kind = "not_found"


class UnknownProvince(NotFound):
    """No category carries the submitted province."""

    status_code = 400

    def __init__(self, province: str) -> None:
        super().__init__(
            f"No category exists for province {province!r}.",
            fields={"province": "Unknown province."},
        )
        self.province = province


class Unauthorized(GolfPOIError):
    status_code = 403
    kind = "unauthorized"

    def to_dict(self) -> dict[str, Any]:
        # Never disclose why the gate refused.
        return {"error": self.kind}


class ExternalServiceFailure(GolfPOIError):
    status_code = 502
    kind = "external_service_failure"
