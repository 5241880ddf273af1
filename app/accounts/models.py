"""
Account models.

This module defines the slim User model used by the settlement engine.

Related files:
    - managers.py: Custom user manager for email-based creation

Note:
    Users are never cascade-deleted into financial history. Appeals hold
    PROTECT references to their appealer and ledger/audit rows store plain
    UUIDs, so deactivating (is_active=False) is the supported removal path.
"""

from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin
from django.db import models

from accounts.managers import UserManager
from core.model_mixins import UUIDPrimaryKeyMixin


class UserRole(models.TextChoices):
    """
    Marketplace role of a user.

    HR and OWNER are staff roles: they may review and resolve appeals.
    """

    HOMEOWNER = "homeowner", "Homeowner"
    CLEANER = "cleaner", "Cleaner"
    BUSINESS_OWNER = "business_owner", "Business Owner"
    HR = "hr", "HR"
    OWNER = "owner", "Platform Owner"


STAFF_ROLES = frozenset({UserRole.HR, UserRole.OWNER})


class User(UUIDPrimaryKeyMixin, AbstractBaseUser, PermissionsMixin):
    """
    User model using email as the primary identifier.

    Fields:
        id: UUID primary key (also used as party_user_id on ledger entries)
        email: Primary identifier, unique, used for login
        role: Marketplace role (see UserRole)
        is_active: Whether the user account is active
        is_staff: Whether the user can access Django admin
        date_joined: When the user account was created
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        max_length=254,
        help_text="User's email address (primary identifier)",
    )
    role = models.CharField(
        max_length=20,
        choices=UserRole.choices,
        default=UserRole.HOMEOWNER,
        db_index=True,
        help_text="Marketplace role; hr and owner may adjudicate appeals",
    )

    is_active = models.BooleanField(
        default=True,
        help_text="Whether this user account is active. Deselect instead of deleting.",
    )
    is_staff = models.BooleanField(
        default=False,
        help_text="Whether the user can access the admin site.",
    )

    date_joined = models.DateTimeField(
        auto_now_add=True,
        help_text="When the user account was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When the user record was last modified",
    )

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        verbose_name = "user"
        verbose_name_plural = "users"
        ordering = ["-date_joined"]

    def __str__(self):
        return self.email

    @property
    def is_reviewer(self) -> bool:
        """Whether this user may move appeals through review states."""
        return self.is_superuser or self.role in STAFF_ROLES

    @property
    def is_supervisor(self) -> bool:
        """Whether this user may act on escalated appeals."""
        return self.is_superuser or self.role == UserRole.OWNER
