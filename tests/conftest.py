from __future__ import annotations

from contextlib import contextmanager
from typing import Any

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from virtbot.providers import base as provider_base
from virtbot.storage import monitors, panels
from virtbot.storage.crypto import ENCRYPTION_KEY_ENV, generate_key
from virtbot.storage.database import Base
from virtbot.telemetry import events


@pytest.fixture
def memory_db(monkeypatch):
    """In-memory database shared across threads, patched into every storage module."""

    engine = create_engine(
        "sqlite://",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    TestingSession = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )
    Base.metadata.create_all(engine)

    @contextmanager
    def session_scope():
        session = TestingSession()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    monkeypatch.setenv(ENCRYPTION_KEY_ENV, generate_key())
    for module in (panels, monitors, events):
        monkeypatch.setattr(module, "session_scope", session_scope)

    yield session_scope

    engine.dispose()


class FakeBackend:
    """Routes ``(method, path)`` to canned responses for the patched ``httpx.AsyncClient``.

    A route value may be a JSON payload (200), an ``httpx.Response``, an exception
    instance to raise, or a callable receiving the call record.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Any] = {}
        self.calls: list[dict[str, Any]] = []

    def add(self, method: str, path: str, result: Any) -> None:
        self.routes[(method.upper(), path)] = result

    def calls_to(self, method: str, path: str) -> list[dict[str, Any]]:
        return [call for call in self.calls if call["method"] == method.upper() and call["path"] == path]

    def respond(self, call: dict[str, Any]) -> httpx.Response:
        request = httpx.Request(call["method"], call["url"])
        result = self.routes.get((call["method"], call["path"]))
        if result is None:
            return httpx.Response(404, json={"errors": "not found"}, request=request)
        if callable(result):
            result = result(call)
        if isinstance(result, BaseException):
            raise result
        if isinstance(result, httpx.Response):
            result.request = request
            return result
        return httpx.Response(200, json=result, request=request)


@pytest.fixture
def backend(monkeypatch) -> FakeBackend:
    fake = FakeBackend()

    class _DummyAsyncClient:
        def __init__(self, *args, **kwargs) -> None:
            self.timeout = kwargs.get("timeout")
            self.verify = kwargs.get("verify")

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        async def request(self, method, url, headers=None, params=None, json=None, data=None):
            path = httpx.URL(url).path
            call = {
                "method": method.upper(),
                "url": url,
                "path": path,
                "headers": headers or {},
                "params": params,
                "json": json,
                "data": data,
                "timeout": self.timeout,
                "verify": self.verify,
            }
            fake.calls.append(call)
            return fake.respond(call)

    monkeypatch.setattr(provider_base.httpx, "AsyncClient", _DummyAsyncClient)

    async def _no_sleep(seconds: float) -> None:
        return None

    monkeypatch.setattr(provider_base, "_sleep", _no_sleep)
    return fake

