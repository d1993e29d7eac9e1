import pytest

from directory_hub.config import settings
from directory_hub.core.exceptions import VaultConfigError
from tests.conftest import TEST_ENCRYPTION_KEY


@pytest.fixture(autouse=True)
def isolated_secrets(monkeypatch, tmp_path):
    """Point /run/secrets at an empty directory and clear related env vars."""
    real_path = settings.Path

    def fake_path(target):
        if str(target) == "/run/secrets":
            return tmp_path
        return real_path(target)

    monkeypatch.setattr(settings, "Path", fake_path)
    for var in (
        "DATABASE_URL",
        "SHARE_LINK_TTL_MINUTES",
        "SHARE_LINK_MIN_TTL_SECONDS",
        "SHARE_LINK_MAX_TTL_SECONDS",
        "SYNC_MAX_WORKERS",
        "SYNC_REQUEST_TIMEOUT",
        "OIDC_ISSUER",
        "OIDC_JWKS_URL",
        "AUDIT_LOG_SIGNING_KEY",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("DEMO_MODE", "false")
    monkeypatch.setenv("FLASK_SECRET_KEY", "flask-secret")
    monkeypatch.setenv("ENCRYPTION_KEY", TEST_ENCRYPTION_KEY)
    return tmp_path


def test_load_settings_defaults():
    cfg = settings.load_settings()

    assert cfg.demo_mode is False
    assert cfg.secret_key == "flask-secret"
    assert cfg.encryption_key == TEST_ENCRYPTION_KEY
    assert cfg.database_url == settings.DEFAULT_DATABASE_URL
    assert cfg.default_share_ttl_seconds == 120
    assert cfg.sync_max_workers == 1
    assert cfg.audit_log_signing_key == ""


def test_secret_file_wins_over_env(isolated_secrets):
    (isolated_secrets / "flask_secret_key").write_text("from-file\n")
    assert settings.load_settings().secret_key == "from-file"


def test_missing_flask_secret_is_fatal_outside_demo(monkeypatch):
    monkeypatch.delenv("FLASK_SECRET_KEY")
    with pytest.raises(RuntimeError):
        settings.load_settings()


def test_demo_mode_generates_missing_keys(monkeypatch):
    monkeypatch.setenv("DEMO_MODE", "true")
    monkeypatch.delenv("FLASK_SECRET_KEY")
    monkeypatch.delenv("ENCRYPTION_KEY")

    cfg = settings.load_settings()

    assert len(cfg.encryption_key) == 64
    assert cfg.secret_key
    assert cfg.audit_log_signing_key


@pytest.mark.parametrize("key", ["", "abcd", "zz" * 32, TEST_ENCRYPTION_KEY + "00"])
def test_invalid_encryption_key_is_rejected(monkeypatch, key):
    monkeypatch.setenv("ENCRYPTION_KEY", key)
    with pytest.raises(VaultConfigError) as exc:
        settings.load_settings()
    if key:
        assert key not in str(exc.value)


def test_encryption_key_is_lowercased():
    assert settings.validate_encryption_key(TEST_ENCRYPTION_KEY.upper()) == TEST_ENCRYPTION_KEY


@pytest.mark.parametrize("raw", ["0", "-5", "abc"])
def test_share_ttl_falls_back_to_two_minutes(monkeypatch, raw):
    monkeypatch.setenv("SHARE_LINK_TTL_MINUTES", raw)
    assert settings.load_settings().default_share_ttl_seconds == 120


def test_share_ttl_from_env(monkeypatch):
    monkeypatch.setenv("SHARE_LINK_TTL_MINUTES", "10")
    assert settings.load_settings().default_share_ttl_seconds == 600


def test_inverted_ttl_bounds_are_fatal(monkeypatch):
    monkeypatch.setenv("SHARE_LINK_MIN_TTL_SECONDS", "600")
    monkeypatch.setenv("SHARE_LINK_MAX_TTL_SECONDS", "60")
    with pytest.raises(RuntimeError):
        settings.load_settings()


def test_jwks_url_derived_from_issuer(monkeypatch):
    monkeypatch.setenv("OIDC_ISSUER", "https://idp.example.com/realms/demo/")
    cfg = settings.load_settings()
    assert cfg.oidc_issuer == "https://idp.example.com/realms/demo"
    assert cfg.oidc_jwks_url == "https://idp.example.com/realms/demo/protocol/openid-connect/certs"


def test_sync_tuning_from_env(monkeypatch):
    monkeypatch.setenv("SYNC_MAX_WORKERS", "4")
    monkeypatch.setenv("SYNC_REQUEST_TIMEOUT", "2.5")
    cfg = settings.load_settings()
    assert cfg.sync_max_workers == 4
    assert cfg.sync_request_timeout == 2.5


def test_repr_masks_secrets():
    cfg = settings.load_settings()
    text = repr(cfg)
    assert "flask-secret" not in text
    assert TEST_ENCRYPTION_KEY not in text
