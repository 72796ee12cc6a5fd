from __future__ import annotations

import io
import json
import os
import sys
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.orm import Session

from newsletter.config import get_settings
from newsletter.db.models import Base, Subscription
from newsletter.db.session import dispose_engines, get_engine
from newsletter.main import app
from newsletter.observability.subscriber import Subscriber, build_subscriber, install_subscriber


# The pipeline is installed once per test process, like in the server.
# With TEST_LOG set, records go to stdout instead of the in-memory sink.
_SINK: io.StringIO | Any = sys.stdout if os.environ.get("TEST_LOG") else io.StringIO()


@pytest.fixture(scope="session", autouse=True)
def telemetry() -> Subscriber:
    subscriber = build_subscriber("test", "info", _SINK)
    install_subscriber(subscriber)
    return subscriber


@pytest.fixture
def log_records() -> Callable[[], list[dict[str, Any]]]:
    if not isinstance(_SINK, io.StringIO):
        pytest.skip("TEST_LOG routes records to stdout")

    _SINK.seek(0)
    _SINK.truncate()

    def read() -> list[dict[str, Any]]:
        return [json.loads(line) for line in _SINK.getvalue().splitlines() if line.strip()]

    return read


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'newsletter.db'}")
    get_settings.cache_clear()
    Base.metadata.create_all(get_engine())

    yield

    dispose_engines()
    get_settings.cache_clear()


@pytest.fixture
def stored_subscriptions() -> Callable[[], list[Subscription]]:
    def read() -> list[Subscription]:
        with Session(get_engine()) as session:
            return list(session.execute(select(Subscription)).scalars())

    return read


@pytest.fixture
async def api_client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
