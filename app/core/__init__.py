"""
Core infrastructure shared by every app.

This package provides:
- Services: BaseService, ServiceResult
- Exceptions: BaseApplicationError and its HTTP-mapped subclasses

Usage:
    from core import BaseService, ServiceResult
    from core import ConflictError, NotFoundError

Note: Models and model mixins are NOT imported here because they depend on
Django's app registry being ready. Import them directly from their modules:
    from core.models import BaseModel
    from core.model_mixins import AppendOnlyMixin, UUIDPrimaryKeyMixin, VersionedMixin
"""

from .exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from .services import BaseService, ServiceResult

__all__ = [
    # Services
    "BaseService",
    "ServiceResult",
    # Exceptions
    "BaseApplicationError",
    "ValidationError",
    "NotFoundError",
    "PermissionDeniedError",
    "ConflictError",
    "ExternalServiceError",
]
