"""
Concurrency control for settlement and appeal operations.

Two complementary mechanisms:

1. **Distributed Locks** (DistributedLock)
   - Redis-based mutual exclusion across web workers and Celery workers
   - TTL releases the lock if the holder crashes
   - Used around whole settlements, appeal transitions and reconciliation

2. **Optimistic Locking** (check_version)
   - Version-based conflict detection for a single row
   - Combined with select_for_update inside a transaction

Usage:

    from settlements.locks import DistributedLock, check_version

    with DistributedLock(f"settlement:{appointment_id}", ttl=120):
        SettlementService.settle_cancellation(...)

    with transaction.atomic():
        appeal = check_version(Appeal, appeal_id, expected_version=3)
        appeal.start_review(by=reviewer)
        appeal.save()
"""

from __future__ import annotations

import time
import uuid as uuid_module
from typing import TYPE_CHECKING, TypeVar

from django.db import models, transaction

from django_redis import get_redis_connection

from core.exceptions import NotFoundError
from settlements.exceptions import LockAcquisitionError, StaleRecordError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis

T = TypeVar("T", bound=models.Model)


# =============================================================================
# Distributed Locks
# =============================================================================


class DistributedLock:
    """
    Redis-based distributed lock with TTL.

    Ownership is tracked with a random token so a process can only
    release a lock it acquired, even after its TTL lapsed and another
    process took over.

    Args:
        key: Lock identifier (prefixed with "lock:")
        ttl: Seconds until the lock auto-releases
        blocking: If True, acquire() polls until the lock frees up
        timeout: Maximum wait in seconds when blocking
    """

    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    EXTEND_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("expire", KEYS[1], ARGV[2])
    else
        return 0
    end
    """

    POLL_INTERVAL = 0.05

    def __init__(
        self,
        key: str,
        ttl: int = 30,
        blocking: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.key = f"lock:{key}"
        self.ttl = ttl
        self.blocking = blocking
        self.timeout = timeout
        self._token: str | None = None
        self._redis: Redis | None = None

    def _get_redis(self) -> Redis:
        if self._redis is None:
            self._redis = get_redis_connection("default")
        return self._redis

    def acquire(self) -> bool:
        """
        Acquire the lock.

        Returns:
            True once the lock is held

        Raises:
            LockAcquisitionError: If the lock is held elsewhere (non-blocking)
                or could not be taken within timeout (blocking)
        """
        self._token = str(uuid_module.uuid4())
        redis = self._get_redis()

        if self.blocking:
            deadline = time.monotonic() + self.timeout
            while time.monotonic() < deadline:
                if self._try_acquire(redis):
                    return True
                time.sleep(self.POLL_INTERVAL)

            self._token = None
            raise LockAcquisitionError(
                f"Failed to acquire lock '{self.key}' within {self.timeout}s",
                details={"key": self.key, "timeout": self.timeout},
            )

        if not self._try_acquire(redis):
            self._token = None
            raise LockAcquisitionError(
                f"Lock '{self.key}' is already held",
                details={"key": self.key},
            )
        return True

    def _try_acquire(self, redis: Redis) -> bool:
        return bool(redis.set(self.key, self._token, nx=True, ex=self.ttl))

    def release(self) -> bool:
        """
        Release the lock if this instance holds it.

        Safe to call more than once.
        """
        if self._token is None:
            return False

        redis = self._get_redis()
        result = redis.eval(self.RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
        return bool(result)

    def extend(self, additional_ttl: int | None = None) -> bool:
        """Reset the TTL (to additional_ttl or the original ttl) if held."""
        if self._token is None:
            return False

        ttl = additional_ttl or self.ttl
        redis = self._get_redis()
        result = redis.eval(self.EXTEND_SCRIPT, 1, self.key, self._token, ttl)
        return bool(result)

    @property
    def is_held(self) -> bool:
        return self._token is not None

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> bool:
        self.release()
        return False


# =============================================================================
# Optimistic Locking
# =============================================================================


def check_version(
    model_class: type[T],
    pk: Any,
    expected_version: int | None = None,
) -> T:
    """
    Lock a row for update and verify its version.

    Must be called inside transaction.atomic(); the row lock is held until
    the enclosing transaction ends. Passing expected_version=None only
    takes the lock.

    Raises:
        StaleRecordError: If the stored version differs from expected_version
        NotFoundError: If the row does not exist
    """
    with transaction.atomic():
        instance = model_class.objects.select_for_update().filter(pk=pk).first()
        model_name = model_class.__name__

        if instance is None:
            raise NotFoundError(
                f"{model_name} {pk} not found",
                error_code=f"{model_name.upper()}_NOT_FOUND",
                details={"pk": str(pk)},
            )

        if expected_version is not None and instance.version != expected_version:
            raise StaleRecordError(
                f"{model_name} {pk} has been modified "
                f"(expected version {expected_version}, current {instance.version})",
                details={
                    "pk": str(pk),
                    "expected_version": expected_version,
                    "current_version": instance.version,
                },
            )

        return instance


__all__ = [
    "DistributedLock",
    "check_version",
]
