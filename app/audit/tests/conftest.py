"""
Pytest fixtures for audit tests.
"""

import uuid

import pytest

from audit.types import Actor


@pytest.fixture
def appointment_id():
    """Random appointment id used as the audit target."""
    return uuid.uuid4()


@pytest.fixture
def homeowner_actor():
    return Actor.homeowner(uuid.uuid4())


@pytest.fixture
def system_actor():
    return Actor.system()
