"""
devkeep/errors.py

Error taxonomy shared by every request handler.

Domain code raises these; devkeep.main turns them into the JSON envelope
{"error": <message>, "code": <kind>} with the matching HTTP status.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for errors that map to a client-visible status."""

    status_code = 500
    code = "internal"
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class Unauthenticated(AppError):
    status_code = 401
    code = "unauthenticated"
    default_message = "Unauthorized"


class ValidationFailed(AppError):
    status_code = 400
    code = "validation_failed"
    default_message = "Invalid request"


class AlreadyInvited(ValidationFailed):
    """Target already has a membership entry (pending or accepted)."""

    code = "already_invited"
    default_message = "User already has access or a pending invitation"


class PermissionDenied(AppError):
    status_code = 403
    code = "permission_denied"
    default_message = "Permission denied"


class PlanLimitReached(PermissionDenied):
    code = "plan_limit_reached"
    default_message = "Plan limit reached - upgrade to create more"


class NotFound(AppError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"


class InvitationNotFound(NotFound):
    """Caller was never invited, or the invitation was declined/removed."""

    code = "invitation_not_found"
    default_message = "No pending invitation found"


class InvitationAlreadyResolved(NotFound):
    """Caller's entry exists but is no longer pending."""

    code = "invitation_already_resolved"
    default_message = "Invitation has already been accepted"


class Internal(AppError):
    pass
