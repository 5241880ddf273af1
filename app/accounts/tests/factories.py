"""
Factory Boy factories for account models.

Usage:
    from accounts.tests.factories import UserFactory, StaffUserFactory

    homeowner = UserFactory()
    cleaner = UserFactory(role=UserRole.CLEANER)
    reviewer = StaffUserFactory()
"""

import factory

from accounts.models import User, UserRole


class UserFactory(factory.django.DjangoModelFactory):
    """
    Factory for User model.

    Default creates an active homeowner.
    """

    class Meta:
        model = User
        skip_postgeneration_save = True

    email = factory.Sequence(lambda n: f"user{n}@example.com")
    role = UserRole.HOMEOWNER
    is_active = True
    is_staff = False

    @classmethod
    def _create(cls, model_class, *args, **kwargs):
        """Override create to use UserManager.create_user()."""
        password = kwargs.pop("password", "TestPass123!")
        return model_class.objects.create_user(
            email=kwargs.pop("email"), password=password, **kwargs
        )


class StaffUserFactory(UserFactory):
    """HR reviewer allowed to adjudicate appeals."""

    email = factory.Sequence(lambda n: f"hr{n}@example.com")
    role = UserRole.HR
    is_staff = True
