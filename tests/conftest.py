"""
Shared pytest fixtures.

Every test gets its own in-memory SQLite database, an in-memory fast store and
a controllable clock, so expiry and rate-limit windows are driven by
`clock.advance()` instead of sleeping.
"""
import base64
from datetime import datetime, timedelta

import pytest

from api import create_app
from api.config import TestingConfig
from authority import TokenAuthority
from authority.audit import AuditRecorder
from authority.rate_limiter import RateLimitPolicy
from authority.store import MemoryFastStore
from models import Client, ClientStatus, DBStorage, User
from utils.security import hash_password, to_epoch

REDIRECT_URI = "https://app.example/cb"
CLIENT_SECRET = "s1-secret"
SERVICE_SECRET = "svc-secret"
USER_PASSWORD = "correct-horse"


class FakeClock:
    """Naive-UTC clock that only moves when a test moves it."""

    def __init__(self, start=datetime(2026, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def time(self) -> float:
        return float(to_epoch(self.now))

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingAuditRecorder(AuditRecorder):
    def __init__(self):
        self.events = []

    def record_security_event(self, kind, context):
        self.events.append((kind, dict(context)))

    def kinds(self):
        return [kind for kind, _ in self.events]


def basic_auth(client_id: str, secret: str) -> dict:
    raw = f"{client_id}:{secret}".encode("utf-8")
    return {"Authorization": "Basic " + base64.b64encode(raw).decode("ascii")}


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def add_client(storage, client_id, secret, grant_types, scopes, redirect_uris=(), status=ClientStatus.ACTIVE):
    client = Client(
        client_id=client_id,
        secret_hash=hash_password(secret),
        name=client_id,
        grant_types=list(grant_types),
        redirect_uris=list(redirect_uris),
        allowed_scopes=list(scopes),
        status=status,
    )
    storage.new(client)
    storage.save()
    return client


def add_user(storage, username, password, is_active=True):
    user = User(username=username, password_hash=hash_password(password), is_active=is_active)
    storage.new(user)
    storage.save()
    return user


def make_authority(storage, fast_store, clock, recorder=None, rate_limits=None, **kwargs):
    policies = {name: RateLimitPolicy.from_config(raw) for name, raw in TestingConfig.RATE_LIMITS.items()}
    policies.update(rate_limits or {})
    return TokenAuthority(
        storage,
        fast_store,
        signing_key=TestingConfig.JWT_SECRET,
        issuer_name=TestingConfig.JWT_ISSUER,
        rate_limits=policies,
        audit_recorder=recorder,
        clock=clock,
        **kwargs,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    db = DBStorage("sqlite://")
    db.reload()
    yield db
    db.close()
    db.drop_all()


@pytest.fixture
def fast_store(clock):
    return MemoryFastStore(clock=clock.time)


@pytest.fixture
def recorder():
    return RecordingAuditRecorder()


@pytest.fixture
def seeded(storage):
    """c1: web client (code, refresh, password); svc: machine client; alice: user."""
    c1 = add_client(
        storage,
        "c1",
        CLIENT_SECRET,
        ["authorization_code", "refresh_token", "password"],
        ["read", "write"],
        [REDIRECT_URI],
    )
    svc = add_client(storage, "svc", SERVICE_SECRET, ["client_credentials"], ["metrics", "read"])
    alice = add_user(storage, "alice", USER_PASSWORD)
    return {"c1": c1, "svc": svc, "alice": alice}


@pytest.fixture
def authority(storage, fast_store, clock, recorder, seeded):
    return make_authority(storage, fast_store, clock, recorder)


@pytest.fixture
def app(authority):
    app = create_app("test", authority=authority)
    yield app


@pytest.fixture
def http(app):
    return app.test_client()


@pytest.fixture
def code_tokens(authority, seeded):
    """Token set from a completed authorization code exchange for alice."""
    code = authority.issue_code("c1", seeded["alice"].id, REDIRECT_URI, "read write")
    return authority.codes.exchange(code, "c1", REDIRECT_URI)
