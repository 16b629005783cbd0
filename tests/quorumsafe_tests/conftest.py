import uuid

import pytest

from quorumsafe.core.call_executor import LocalCallExecutor
from quorumsafe.core.config import Settings
from quorumsafe.core.engine import ApprovalEngine

OWNERS = ["alice", "bob", "charlie"]


@pytest.fixture
def settings():
    """Settings independent of the developer's environment."""
    return Settings(environment="test", metrics_enabled=True, max_payload_bytes=1024)


@pytest.fixture
def executor():
    return LocalCallExecutor()


@pytest.fixture
def make_engine(settings, executor):
    """Factory for engines sharing the test executor; each gets a unique metrics label."""

    def _make(owners=None, required=2, call_executor=None, **kwargs):
        kwargs.setdefault("name", f"test-{uuid.uuid4().hex[:8]}")
        kwargs.setdefault("settings", settings)
        return ApprovalEngine(
            OWNERS if owners is None else owners,
            required,
            call_executor=executor if call_executor is None else call_executor,
            **kwargs,
        )

    return _make


@pytest.fixture
def engine(make_engine):
    """A 2-of-3 engine holding 1000 units."""
    engine = make_engine()
    engine.deposit("funder", 1000)
    return engine
