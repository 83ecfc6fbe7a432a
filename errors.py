"""Typed failures raised by the compliance engine.

Every failure carries a ``kind`` (stable machine-readable tag) and a
human-readable message.  The HTTP layer maps kinds to status codes; callers
outside the engine decide how to present them.
"""

from __future__ import annotations


class ComplianceError(Exception):
    """Base class for all engine failures."""

    kind = "compliance_error"

    def __init__(self, message: str, **context):
        self.message = message
        self.context = context
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, **self.context}


class ValidationError(ComplianceError):
    """Missing or malformed input fields."""

    kind = "validation_error"


class AuthorizationError(ComplianceError):
    """Wrong role for the stage, or an actor verifying their own document."""

    kind = "authorization_error"


class InvalidTransitionError(ComplianceError):
    """Requested status edge is not in the transition table."""

    kind = "invalid_transition"

    def __init__(self, current: str, target: str, reason: str | None = None):
        msg = f"Cannot move document from '{current}' to '{target}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, current_status=current, target_status=target)
        self.current_status = current
        self.target_status = target


class NotFoundError(ComplianceError):
    """Unknown template/item/document id."""

    kind = "not_found"


class StoreError(ComplianceError):
    """Underlying store fetch/insert failed."""

    kind = "store_error"


class ConfigurationError(ComplianceError):
    """Checklist configuration failed validation at load time."""

    kind = "configuration_error"
