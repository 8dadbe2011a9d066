"""Shared test fixtures for browser_worker.

Fixture tiers:
  engine    — FakeEngine, no real browser
  registry  — SessionRegistry over the fake engine with a manual clock
  client    — aiohttp TestClient for the full app (auth disabled)
"""
from __future__ import annotations

from typing import AsyncGenerator

import pytest
from aiohttp.test_utils import TestClient, TestServer

from browser_worker.config import Config
from browser_worker.server import create_app
from browser_worker.sessions import SessionRegistry
from tests.helpers import FakeClock, FakeEngine


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry(engine: FakeEngine, clock: FakeClock) -> SessionRegistry:
    return SessionRegistry(engine, clock=clock)


@pytest.fixture
def test_config() -> Config:
    """Auth disabled; the reaper interval is long enough never to fire during a test."""
    return Config(secret=None, session_ttl_ms=60_000, sweep_interval_s=3600)


@pytest.fixture
def secured_config() -> Config:
    return Config(secret="s3cret", session_ttl_ms=60_000, sweep_interval_s=3600)


@pytest.fixture
async def client(
    test_config: Config, engine: FakeEngine, registry: SessionRegistry,
) -> AsyncGenerator[TestClient, None]:
    app = create_app(test_config, engine=engine, registry=registry)
    async with TestClient(TestServer(app)) as c:
        yield c


@pytest.fixture
async def secured_client(
    secured_config: Config, engine: FakeEngine, registry: SessionRegistry,
) -> AsyncGenerator[TestClient, None]:
    app = create_app(secured_config, engine=engine, registry=registry)
    async with TestClient(TestServer(app)) as c:
        yield c
