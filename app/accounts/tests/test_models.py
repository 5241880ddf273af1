"""
Tests for the User model, its manager and role-based permissions.
"""

from unittest.mock import MagicMock

import pytest

from accounts.models import User, UserRole
from accounts.permissions import IsReviewer
from accounts.tests.factories import StaffUserFactory, UserFactory

pytestmark = pytest.mark.django_db


class TestUserManager:
    def test_create_user_normalizes_email(self):
        user = User.objects.create_user(email="Owner@EXAMPLE.com", password="pw-123456")

        assert user.email == "Owner@example.com"
        assert user.check_password("pw-123456")
        assert user.role == UserRole.HOMEOWNER

    def test_create_user_without_password(self):
        user = User.objects.create_user(email="svc@example.com")

        assert not user.has_usable_password()

    def test_create_user_requires_email(self):
        with pytest.raises(ValueError):
            User.objects.create_user(email="")

    def test_superuser_is_owner(self):
        user = User.objects.create_superuser(email="root@example.com", password="x")

        assert user.role == UserRole.OWNER
        assert user.is_supervisor


class TestRoles:
    @pytest.mark.parametrize(
        ("role", "reviewer", "supervisor"),
        [
            (UserRole.HOMEOWNER, False, False),
            (UserRole.CLEANER, False, False),
            (UserRole.BUSINESS_OWNER, False, False),
            (UserRole.HR, True, False),
            (UserRole.OWNER, True, True),
        ],
    )
    def test_role_capabilities(self, role, reviewer, supervisor):
        user = UserFactory(role=role)

        assert user.is_reviewer is reviewer
        assert user.is_supervisor is supervisor

    def test_is_reviewer_permission(self):
        request = MagicMock(user=StaffUserFactory())

        assert IsReviewer().has_permission(request, view=None)

        request.user = UserFactory()
        assert not IsReviewer().has_permission(request, view=None)
