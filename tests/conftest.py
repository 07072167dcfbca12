"""
tests/conftest.py -- Shared fixtures and fakes for the Sentinel test suite.

This module provides:
  - FrozenClock: injectable clock that only moves when a test advances it
  - RecordingNotifier: Notifier that renders every message (so a missing
    template value fails the test) and records it instead of sending
  - StaticGeoResolver: GeoResolver answering from a fixed address table
  - settings / clock / store / notifier / geo / components / service:
    function-scoped unit fixtures over a private in-memory database
  - api: module-scoped TestClient over the real FastAPI app with a patched
    lifespan that wires test components into app.state

Design: the api fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The uuid suffix keeps test modules isolated.

The environment must be prepared before api.main is imported: DEBUG lets
get_settings() auto-generate SECRET_KEY, and ALLOWED_HOSTS must admit
TestClient's "testserver" host or TrustedHostMiddleware answers 400.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

# CRITICAL: set before any api/auth/core import -- api.main reads settings at import time.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost", "127.0.0.1"]')
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, attach_components
from auth.geo import GeoResolver
from auth.models import Location, RequestContext, User
from auth.notifier import Notifier, SmtpNotifier
from auth.service import AuthComponents, AuthService, build_auth
from auth.store import RecordStore
from core.config import Settings

# ---------------------------------------------------------------------------
# Test data
# ---------------------------------------------------------------------------

PASSWORD = "Secret123"

CHROME_MAC_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
FIREFOX_LINUX_UA = "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0"

# Documentation address ranges (RFC 5737) -- public, so the resolver is consulted.
ACCRA = "198.51.100.10"
ACCRA_EAST = "198.51.100.20"  # about 10 km from ACCRA
LONDON = "203.0.113.50"

GEO_TABLE = {
    ACCRA: Location(country="GH", region="Greater Accra", city="Accra", latitude=5.6037, longitude=-0.1870),
    ACCRA_EAST: Location(country="GH", region="Greater Accra", city="Teshie", latitude=5.5830, longitude=-0.1000),
    LONDON: Location(country="GB", region="England", city="London", latitude=51.5074, longitude=-0.1278),
}


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "secret_key": "test-secret-key-" + "k" * 32,
        "bcrypt_rounds": 4,
        "trust_forwarded_for": True,
        "smtp_enabled": False,
    }
    values.update(overrides)
    return Settings(**values)


def make_context(address: str = ACCRA, user_agent: str = CHROME_MAC_UA, accept_language: str = "en-GB") -> RequestContext:
    return RequestContext(address=address, user_agent=user_agent, accept_language=accept_language)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FrozenClock:
    """Callable clock that returns the same instant until advanced."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier(Notifier):
    """Renders and records messages instead of sending them.

    succeed controls the return value so tests can simulate a mail outage.
    """

    def __init__(self, settings: Settings, succeed: bool = True) -> None:
        self._renderer = SmtpNotifier(settings)
        self.succeed = succeed
        self.sent: list[tuple[str, str, dict]] = []

    def send(self, template: str, recipient: str, context: dict) -> bool:
        self._renderer.render(template, context)
        self.sent.append((template, recipient, context))
        return self.succeed

    def last(self, template: str, recipient: str | None = None) -> dict:
        """Return the context of the newest message of this template (optionally to recipient)."""
        for name, to, context in reversed(self.sent):
            if name == template and (recipient is None or to == recipient):
                return context
        raise AssertionError(f"No {template!r} message recorded")

    def count(self, template: str) -> int:
        return sum(1 for name, _to, _ctx in self.sent if name == template)


class StaticGeoResolver(GeoResolver):
    """GeoResolver answering from a fixed table. Unknown addresses resolve to Location.unknown()."""

    def __init__(self, table: dict[str, Location]) -> None:
        super().__init__("")
        self._table = dict(table)

    def lookup(self, address: str) -> Location:
        return self._table.get(address, Location.unknown())


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def store(clock: FrozenClock) -> Generator[RecordStore, None, None]:
    s = RecordStore("sqlite:///:memory:", clock=clock)
    yield s
    s.close()


@pytest.fixture
def notifier(settings: Settings) -> RecordingNotifier:
    return RecordingNotifier(settings)


@pytest.fixture
def geo() -> StaticGeoResolver:
    return StaticGeoResolver(GEO_TABLE)


@pytest.fixture
def components(
    settings: Settings,
    clock: FrozenClock,
    store: RecordStore,
    notifier: RecordingNotifier,
    geo: StaticGeoResolver,
) -> AuthComponents:
    return build_auth(settings, clock=clock, store=store, notifier=notifier, geo=geo)


@pytest.fixture
def service(components: AuthComponents) -> AuthService:
    return components.service


def register_verified(
    service: AuthService,
    notifier: RecordingNotifier,
    email: str = "ama@example.com",
    password: str = PASSWORD,
    context: RequestContext | None = None,
    name: str = "Ama Mensah",
) -> User:
    """Register an account and consume its emailed code. Returns the verified user."""
    context = context or make_context()
    service.register(email, password, context, name=name)
    code = notifier.last("verification", email)["code"]
    return service.verify_email(email, code, context)


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    components: AuthComponents
    notifier: RecordingNotifier
    clock: FrozenClock
    settings: Settings

    def headers(self, address: str = ACCRA, token: str | None = None, user_agent: str = CHROME_MAC_UA) -> dict:
        headers = {"X-Forwarded-For": address, "User-Agent": user_agent, "Accept-Language": "en-GB"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def register(self, email: str, address: str = ACCRA, name: str = "Kofi Boateng") -> dict:
        resp = self.client.post(
            "/api/v1/auth/register",
            json={"name": name, "email": email, "password": PASSWORD, "password_confirmation": PASSWORD},
            headers=self.headers(address),
        )
        assert resp.status_code == 201, resp.text
        return resp.json()["data"]

    def verify(self, email: str, address: str = ACCRA) -> dict:
        code = self.notifier.last("verification", email)["code"]
        resp = self.client.post(
            "/api/v1/auth/verify-email", json={"email": email, "code": code}, headers=self.headers(address)
        )
        assert resp.status_code == 200, resp.text
        return resp.json()["data"]

    def login(self, email: str, password: str = PASSWORD, address: str = ACCRA, user_agent: str = CHROME_MAC_UA):
        return self.client.post(
            "/api/v1/auth/login",
            json={"email": email, "password": password},
            headers=self.headers(address, user_agent=user_agent),
        )

    def signed_in(self, email: str, address: str = ACCRA) -> dict:
        """Register, verify and log in. Returns the login response data."""
        self.register(email, address)
        self.verify(email, address)
        resp = self.login(email, address=address)
        assert resp.status_code == 200, resp.text
        return resp.json()["data"]


def _patch_lifespan(settings: Settings, components: AuthComponents):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-built test components into app.state so TestClient routes use
    the isolated test database, the recording notifier and the frozen clock.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        attach_components(app, settings, components)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api() -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness over the real app, one per test module.

    Per-route rate limits are switched off so tests can hit the same
    endpoint repeatedly; the brute-force guard stays fully active.
    """
    settings = make_settings()
    clock = FrozenClock()
    store = RecordStore(
        f"sqlite:///file:test_auth_{uuid.uuid4().hex[:12]}?mode=memory&cache=shared&uri=true",
        clock=clock,
    )
    notifier = RecordingNotifier(settings)
    components = build_auth(settings, clock=clock, store=store, notifier=notifier, geo=StaticGeoResolver(GEO_TABLE))

    app.router.lifespan_context = _patch_lifespan(settings, components)
    limiter.enabled = False

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(client=client, components=components, notifier=notifier, clock=clock, settings=settings)

    limiter.enabled = True
    components.close()
