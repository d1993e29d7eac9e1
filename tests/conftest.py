"""Pytest shared fixtures: temporary database, fixed vault key, stub HTTP."""
import os
import pathlib
import sys
import time
from typing import Any, Callable, Optional

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

TEST_ENCRYPTION_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"
TEST_SIGNING_KEY = "test-signing-key-for-audit-trail"

# Configure test environment BEFORE any app imports
os.environ.setdefault("DEMO_MODE", "true")
os.environ.setdefault("ENCRYPTION_KEY", TEST_ENCRYPTION_KEY)
os.environ.setdefault("FLASK_SECRET_KEY", "test-flask-secret")
os.environ.setdefault("SCAN_GEOLOCATION_ENABLED", "false")

import jwt
import pytest
import requests
from cryptography.hazmat.primitives.asymmetric import rsa

from directory_hub.config import AppConfig
from directory_hub.core.audit import AuditTrail
from directory_hub.core.integrations import IntegrationSettingsService
from directory_hub.core.share_links import ShareTokenManager
from directory_hub.core.sync_ledger import SyncLedger
from directory_hub.core.vault import CredentialVault
from directory_hub.db import create_session_factory, session_scope
from directory_hub.models import Contact


# ─────────────────────────────────────────────────────────────────────────────
# Network Guard Rails
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def _block_network(monkeypatch, request):
    """Fail any unit test that reaches the real network.

    Integration tests are marked with @pytest.mark.integration and skip this.
    """
    if request.node.get_closest_marker("integration"):
        return

    def _blocked(*args, **kwargs):
        raise RuntimeError(f"Unexpected network access in unit test: {args[:2]}")

    monkeypatch.setattr(requests, "request", _blocked)
    monkeypatch.setattr(requests, "get", _blocked)
    monkeypatch.setattr(requests, "post", _blocked)


# ─────────────────────────────────────────────────────────────────────────────
# Stub HTTP transport
# ─────────────────────────────────────────────────────────────────────────────
class StubResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, reason: str = "", text: str = ""):
        self.status_code = status_code
        self._payload = payload
        self.reason = reason
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


class StubHTTP:
    """Stands in for the requests module (``request`` and ``get``).

    ``handler(method, url, kwargs)`` returns a StubResponse or raises a
    requests exception. Every call is kept in ``calls``.
    """

    def __init__(self, handler: Optional[Callable[[str, str, dict], StubResponse]] = None):
        self.handler = handler or (lambda method, url, kwargs: StubResponse(200, {}))
        self.calls: list[tuple[str, str, dict]] = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        return self.handler(method, url, kwargs)

    def get(self, url, **kwargs):
        return self.request("GET", url, **kwargs)

    def methods(self) -> list[str]:
        return [method for method, _, _ in self.calls]


@pytest.fixture()
def stub_http():
    return StubHTTP()


# ─────────────────────────────────────────────────────────────────────────────
# Database and core services
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture()
def database_url(tmp_path):
    # A file database so threads share one store
    return f"sqlite:///{tmp_path / 'directory_hub_test.db'}"


@pytest.fixture()
def session_factory(database_url):
    factory = create_session_factory(database_url)
    yield factory
    factory.kw["bind"].dispose()


@pytest.fixture()
def vault():
    return CredentialVault(TEST_ENCRYPTION_KEY)


@pytest.fixture()
def audit_trail(session_factory):
    return AuditTrail(session_factory, TEST_SIGNING_KEY)


@pytest.fixture()
def share_manager(session_factory, audit_trail):
    return ShareTokenManager(session_factory, audit_trail)


@pytest.fixture()
def ledger(session_factory):
    return SyncLedger(session_factory, max_error_details=50)


@pytest.fixture()
def integrations(session_factory, vault, audit_trail):
    return IntegrationSettingsService(session_factory, vault, audit_trail)


@pytest.fixture()
def make_contact(session_factory):
    """Insert a contact and return its id."""

    def _make(**fields) -> int:
        values = {"first_name": "Alice", "last_name": "Smith", "email": "alice@example.com"}
        values.update(fields)
        with session_scope(session_factory) as session:
            contact = Contact(**values)
            session.add(contact)
            session.flush()
            return contact.id

    return _make


# ─────────────────────────────────────────────────────────────────────────────
# Flask Test Client
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture()
def app_config(database_url):
    return AppConfig(
        demo_mode=True,
        secret_key="test-flask-secret",
        encryption_key=TEST_ENCRYPTION_KEY,
        database_url=database_url,
        oidc_issuer="https://idp.example.com/realms/demo",
        oidc_jwks_url="https://idp.example.com/realms/demo/protocol/openid-connect/certs",
        audit_log_signing_key=TEST_SIGNING_KEY,
        scan_geolocation_enabled=False,
    )


@pytest.fixture()
def flask_app(app_config, session_factory, stub_http):
    """App with authentication bypassed (TESTING + SKIP_AUTH_FOR_TESTS)."""
    from directory_hub.flask_app import create_app

    app = create_app(app_config, session_factory=session_factory, http=stub_http)
    app.config.update(TESTING=True, SKIP_AUTH_FOR_TESTS=True)
    yield app
    app.extensions["directory_hub"].scans.shutdown(wait=True)


@pytest.fixture()
def client(flask_app):
    with flask_app.test_client() as client:
        yield client


@pytest.fixture()
def services(flask_app):
    return flask_app.extensions["directory_hub"]


AUTH = {"Authorization": "Bearer test-token"}


# ─────────────────────────────────────────────────────────────────────────────
# RSA Key Pair for JWT Testing
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(scope="session")
def rsa_key_pair():
    """Generate RSA key pair for JWT signing in tests."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return {"private_key": private_key, "public_key": private_key.public_key()}


def create_valid_jwt(
    rsa_key_pair: dict,
    issuer: str = "https://idp.example.com/realms/demo",
    sub: str = "user-123",
    groups: Optional[list[str]] = None,
    exp_offset: int = 3600,
    kid: str = "default-key-id",
) -> str:
    """Create an RS256-signed JWT for testing."""
    now = int(time.time())
    payload = {
        "iss": issuer,
        "sub": sub,
        "email": f"{sub}@example.com",
        "exp": now + exp_offset,
        "nbf": now,
        "iat": now,
        "groups": groups if groups is not None else ["/directory-admins"],
    }
    return jwt.encode(payload, rsa_key_pair["private_key"], algorithm="RS256", headers={"kid": kid})


# ─────────────────────────────────────────────────────────────────────────────
# Pytest Configuration
# ─────────────────────────────────────────────────────────────────────────────
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (real network)"
    )
