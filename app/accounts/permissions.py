"""
DRF permission classes based on marketplace roles.
"""

from rest_framework.permissions import BasePermission


class IsReviewer(BasePermission):
    """Allow HR, owners and superusers; they adjudicate appeals and read reports."""

    message = "Only staff reviewers may perform this action."

    def has_permission(self, request, view) -> bool:
        user = request.user
        return bool(user and user.is_authenticated and user.is_reviewer)
