"""
Appeal-specific exceptions.

Exception Hierarchy:
    AppealNotFound - Unknown appeal id (inherits NotFoundError)
    AppealPermissionDenied - Actor may not perform the action (inherits PermissionDeniedError)
    AppealWindowExpired - Submitted after the settlement's appeal window (inherits ValidationError)
    AppealAlreadyOpen - Another open appeal exists for the appointment (inherits ConflictError)
    InvalidAppealTransition - Workflow transition not allowed (inherits InvalidStateTransitionError)

Usage:
    from appeals.exceptions import InvalidAppealTransition

    try:
        AppealService.close_appeal(appeal_id, actor=reviewer)
    except InvalidAppealTransition as e:
        return Response(e.to_dict(), status=e.http_status)
"""

from core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from settlements.exceptions import InvalidStateTransitionError


class AppealNotFound(NotFoundError):
    default_error_code: str = "APPEAL_NOT_FOUND"


class AppealPermissionDenied(PermissionDeniedError):
    """
    Raised when an actor may not act on an appeal.

    Appealers can submit and read their own appeals; only staff reviewers
    move an appeal through review, and only supervisors act on escalated
    appeals.
    """

    default_error_code: str = "APPEAL_PERMISSION_DENIED"


class AppealWindowExpired(ValidationError):
    default_error_code: str = "APPEAL_WINDOW_EXPIRED"


class AppealAlreadyOpen(ConflictError):
    default_error_code: str = "APPEAL_ALREADY_OPEN"


class InvalidAppealTransition(InvalidStateTransitionError):
    """
    Raised when a workflow transition is not allowed from the current status.

    The appeal is left unchanged. details carries the appeal id, the
    current status and the attempted action.
    """

    default_error_code: str = "INVALID_APPEAL_TRANSITION"


__all__ = [
    "AppealNotFound",
    "AppealPermissionDenied",
    "AppealWindowExpired",
    "AppealAlreadyOpen",
    "InvalidAppealTransition",
]
