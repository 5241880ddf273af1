"""
Tests for settlement concurrency control.

DistributedLock runs against a mocked Redis connection; check_version runs
against the test database.
"""

import uuid
from unittest.mock import MagicMock, patch

import pytest

from core.exceptions import NotFoundError
from settlements.exceptions import LockAcquisitionError, StaleRecordError
from settlements.locks import DistributedLock, check_version
from settlements.models import Settlement
from settlements.tests.factories import SettlementFactory


@pytest.fixture
def mock_redis():
    redis = MagicMock()
    with patch("settlements.locks.get_redis_connection", return_value=redis):
        yield redis


class TestDistributedLock:
    def test_acquire_sets_key_with_ttl(self, mock_redis):
        mock_redis.set.return_value = True

        lock = DistributedLock("settlement:abc", ttl=120, blocking=False)

        assert lock.acquire() is True
        assert lock.is_held
        args, kwargs = mock_redis.set.call_args
        assert args[0] == "lock:settlement:abc"
        assert kwargs == {"nx": True, "ex": 120}

    def test_non_blocking_raises_when_held(self, mock_redis):
        mock_redis.set.return_value = False

        lock = DistributedLock("settlement:abc", blocking=False)

        with pytest.raises(LockAcquisitionError) as exc_info:
            lock.acquire()

        assert exc_info.value.details["key"] == "lock:settlement:abc"
        assert not lock.is_held

    def test_blocking_retries_until_free(self, mock_redis):
        mock_redis.set.side_effect = [False, False, True]

        with patch("settlements.locks.time.sleep"):
            assert DistributedLock("appeal:1", timeout=5.0).acquire() is True

        assert mock_redis.set.call_count == 3

    def test_blocking_times_out(self, mock_redis):
        mock_redis.set.return_value = False

        lock = DistributedLock("appeal:1", timeout=0.1)

        with pytest.raises(LockAcquisitionError, match="within 0.1s"):
            lock.acquire()

    def test_release_only_own_token(self, mock_redis):
        mock_redis.set.return_value = True
        mock_redis.eval.return_value = 0

        lock = DistributedLock("appeal:1", blocking=False)
        lock.acquire()

        assert lock.release() is False
        assert not lock.is_held

    def test_release_without_acquire(self, mock_redis):
        assert DistributedLock("appeal:1").release() is False
        mock_redis.eval.assert_not_called()

    def test_context_manager_releases_on_error(self, mock_redis):
        mock_redis.set.return_value = True
        mock_redis.eval.return_value = 1

        with pytest.raises(ValueError):
            with DistributedLock("appeal:1"):
                raise ValueError("boom")

        mock_redis.eval.assert_called_once()

    def test_extend_uses_custom_ttl(self, mock_redis):
        mock_redis.set.return_value = True
        mock_redis.eval.return_value = 1

        lock = DistributedLock("appeal:1", ttl=30, blocking=False)
        lock.acquire()

        assert lock.extend(60) is True
        assert mock_redis.eval.call_args[0][4] == 60


@pytest.mark.django_db
class TestCheckVersion:
    def test_returns_locked_row(self):
        settlement = SettlementFactory()

        locked = check_version(Settlement, settlement.pk, expected_version=1)

        assert locked.pk == settlement.pk

    def test_stale_version(self):
        settlement = SettlementFactory()

        with pytest.raises(StaleRecordError) as exc_info:
            check_version(Settlement, settlement.pk, expected_version=4)

        assert exc_info.value.details["current_version"] == 1

    def test_missing_row(self):
        with pytest.raises(NotFoundError) as exc_info:
            check_version(Settlement, uuid.uuid4())

        assert exc_info.value.error_code == "SETTLEMENT_NOT_FOUND"
