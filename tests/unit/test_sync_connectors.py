"""Unit tests for the CardDAV and Mosyle connectors."""
import pytest
from sqlalchemy import select

from directory_hub.core.exceptions import IntegrationError, UpstreamSyncError, ValidationError
from directory_hub.core.sync.carddav import CardDavConnector, normalize_carddav_url, normalize_password
from directory_hub.core.sync.mosyle import MosyleConnector
from directory_hub.db import session_scope
from directory_hub.models import Contact, Device
from tests.conftest import StubHTTP, StubResponse

GOOGLE_DEFAULT = "https://www.googleapis.com/carddav/v1/principals/alice@gmail.com/lists/default/"


# ─────────────────────────────────────────────────────────────────────────────
# CardDAV
# ─────────────────────────────────────────────────────────────────────────────
@pytest.mark.parametrize(
    "url",
    [
        "https://www.google.com/.well-known/carddav",
        "https://google.com/.well-known/carddav/",
        "https://www.googleapis.com/carddav/v1/principals/alice@gmail.com",
    ],
)
def test_google_discovery_urls_resolve_to_default_list(url):
    assert normalize_carddav_url(url, "alice@gmail.com") == GOOGLE_DEFAULT


def test_other_urls_get_trailing_slash():
    assert normalize_carddav_url("https://dav.example.com/book", "u") == "https://dav.example.com/book/"
    assert normalize_carddav_url(GOOGLE_DEFAULT, "bob") == GOOGLE_DEFAULT


def test_empty_url_is_integration_error():
    with pytest.raises(IntegrationError):
        normalize_carddav_url("  ", "u")


def test_app_password_spaces_are_stripped():
    assert normalize_password("abcd efgh ijkl mnop") == "abcdefghijklmnop"


def _carddav(http):
    return CardDavConnector.from_credentials(
        {"url": "https://dav.example.com/book", "username": "alice", "password": "ab cd"}, http=http
    )


def test_push_update_puts_vcard():
    http = StubHTTP(lambda m, u, k: StubResponse(201))
    contact = Contact(id=7, first_name="Alice", last_name="Smith", email="alice@example.com")

    _carddav(http).push(contact, "update")

    method, url, kwargs = http.calls[0]
    assert method == "PUT"
    assert url == "https://dav.example.com/book/7.vcf"
    assert kwargs["headers"]["Content-Type"].startswith("text/vcard")
    assert kwargs["auth"] == ("alice", "abcd")
    assert b"FN:Alice Smith" in kwargs["data"]


def test_push_delete_treats_404_as_success():
    http = StubHTTP(lambda m, u, k: StubResponse(404))
    _carddav(http).push(7, "delete")
    assert http.calls[0][:2] == ("DELETE", "https://dav.example.com/book/7.vcf")


def test_push_rejects_unknown_action():
    with pytest.raises(ValidationError):
        _carddav(StubHTTP()).push(7, "merge")


def test_push_invalid_contact_makes_no_request():
    http = StubHTTP()
    with pytest.raises(ValidationError):
        _carddav(http).push(Contact(id=1, name="No Email"), "create")
    assert http.calls == []


def test_probe_sends_propfind_depth_zero():
    http = StubHTTP(lambda m, u, k: StubResponse(207))
    assert _carddav(http).probe() is None
    method, _, kwargs = http.calls[0]
    assert method == "PROPFIND"
    assert kwargs["headers"]["Depth"] == "0"


def test_probe_returns_failure_instead_of_raising():
    http = StubHTTP(lambda m, u, k: StubResponse(401, reason="Unauthorized"))
    failure = _carddav(http).probe()
    assert isinstance(failure, UpstreamSyncError)
    assert failure.status_code == 401


# ─────────────────────────────────────────────────────────────────────────────
# Mosyle
# ─────────────────────────────────────────────────────────────────────────────
def _mosyle(http):
    return MosyleConnector.from_credentials({"baseUrl": "https://mdm.example.com/", "apiKey": "key-1"}, http=http)


def test_fetch_devices_reads_devices_list():
    devices = [{"serial_number": "abc123", "name": "Mac"}]
    http = StubHTTP(lambda m, u, k: StubResponse(200, {"devices": devices}))

    assert _mosyle(http).fetch_devices() == devices
    method, url, kwargs = http.calls[0]
    assert (method, url) == ("GET", "https://mdm.example.com/v1/devices")
    assert kwargs["headers"]["Authorization"] == "Bearer key-1"


def test_fetch_devices_without_list_is_empty():
    http = StubHTTP(lambda m, u, k: StubResponse(200, {"status": "ok"}))
    assert _mosyle(http).fetch_devices() == []


def test_fetch_devices_rejects_non_json():
    http = StubHTTP(lambda m, u, k: StubResponse(200, None))
    with pytest.raises(UpstreamSyncError):
        _mosyle(http).fetch_devices()


def test_upsert_device_matches_uppercased_serial(session_factory):
    with session_scope(session_factory) as session:
        MosyleConnector.upsert_device(
            session, {"serial_number": "c02abc", "device_name": "Old", "osversion": "13.0", "id": 5}
        )
    with session_scope(session_factory) as session:
        MosyleConnector.upsert_device(session, {"serial_number": "C02ABC", "name": "New", "model": "MacBook Pro"})

    with session_scope(session_factory) as session:
        devices = session.execute(select(Device)).scalars().all()
    assert len(devices) == 1
    device = devices[0]
    assert device.serial_number == "C02ABC"
    assert device.name == "New"
    assert device.model == "MacBook Pro"
    assert device.os_version == "13.0"
    assert device.mosyle_device_id == "5"
    assert device.sync_status == "synced"
    assert device.last_synced_at is not None


@pytest.mark.parametrize("payload", [{"name": "No serial"}, {"serial_number": "  "}, "not-a-dict"])
def test_upsert_device_requires_serial(session_factory, payload):
    with session_scope(session_factory) as session:
        with pytest.raises(ValidationError):
            MosyleConnector.upsert_device(session, payload)


def test_mosyle_probe_uses_limit_one():
    http = StubHTTP(lambda m, u, k: StubResponse(200, {"devices": []}))
    assert _mosyle(http).probe() is None
    assert http.calls[0][2]["params"] == {"limit": 1}
