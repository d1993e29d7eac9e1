"""Unit tests for the directory HTTP client."""
import pytest
import requests

from directory_hub.core.exceptions import UpstreamSyncError
from directory_hub.core.sync.client import DirectoryClient
from tests.conftest import StubHTTP, StubResponse


def test_basic_auth_and_timeout_on_every_call():
    http = StubHTTP()
    client = DirectoryClient("https://dav.example.com/book/", basic_auth=("alice", "pw"), timeout=3, http=http)

    client.put("1.vcf", data=b"card", headers={"Content-Type": "text/vcard"})

    method, url, kwargs = http.calls[0]
    assert method == "PUT"
    assert url == "https://dav.example.com/book/1.vcf"
    assert kwargs["auth"] == ("alice", "pw")
    assert kwargs["timeout"] == 3
    assert kwargs["headers"]["Content-Type"] == "text/vcard"
    assert "User-Agent" in kwargs["headers"]


def test_bearer_token_header():
    http = StubHTTP()
    client = DirectoryClient("https://mdm.example.com/", bearer_token="key-1", http=http)

    client.get("v1/devices", params={"limit": 1})

    _, _, kwargs = http.calls[0]
    assert kwargs["headers"]["Authorization"] == "Bearer key-1"
    assert kwargs["params"] == {"limit": 1}
    assert "auth" not in kwargs


def test_http_error_raises_upstream_error_with_status():
    http = StubHTTP(lambda m, u, k: StubResponse(500, reason="Internal Server Error"))
    client = DirectoryClient("https://dav.example.com/", http=http)

    with pytest.raises(UpstreamSyncError) as exc:
        client.put("1.vcf", data=b"x")

    assert exc.value.status_code == 500
    assert exc.value.endpoint == "https://dav.example.com/1.vcf"
    assert exc.value.message.startswith("[500]")


def test_allowed_status_is_not_an_error():
    http = StubHTTP(lambda m, u, k: StubResponse(404))
    client = DirectoryClient("https://dav.example.com/", http=http)

    assert client.delete("1.vcf", allowed_statuses=(404,)).status_code == 404


@pytest.mark.parametrize(
    "exc, fragment",
    [
        (requests.Timeout("slow"), "timed out after 10s"),
        (requests.ConnectionError("refused"), "unreachable"),
        (requests.TooManyRedirects("loop"), "TooManyRedirects"),
    ],
)
def test_transport_errors_have_no_status(exc, fragment):
    def handler(method, url, kwargs):
        raise exc

    client = DirectoryClient("https://dav.example.com/", timeout=10, http=StubHTTP(handler))

    with pytest.raises(UpstreamSyncError) as caught:
        client.get("")

    assert caught.value.status_code is None
    assert fragment in caught.value.message


def test_propfind_sets_depth_and_xml_body():
    http = StubHTTP(lambda m, u, k: StubResponse(207))
    client = DirectoryClient("https://dav.example.com/", http=http)

    client.propfind("", body="<d:propfind/>", depth="0")

    method, _, kwargs = http.calls[0]
    assert method == "PROPFIND"
    assert kwargs["headers"]["Depth"] == "0"
    assert kwargs["data"] == b"<d:propfind/>"


def test_absolute_url_is_not_prefixed():
    client = DirectoryClient("https://dav.example.com/")
    assert client.url_for("https://other.example.com/x") == "https://other.example.com/x"
    assert "pw" not in repr(DirectoryClient("https://x/", basic_auth=("u", "pw")))
