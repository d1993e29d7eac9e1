"""Low-level HTTP client for external directory endpoints.

Handles authentication headers, bounded timeouts and error mapping.
"""
from __future__ import annotations
from typing import Any, Iterable, Optional, Tuple

import requests

from ..exceptions import UpstreamSyncError

REQUEST_TIMEOUT = 10
USER_AGENT = "Directory-Hub-Sync/1.0"


class DirectoryClient:
    """HTTP client for a CardDAV-like or device-management endpoint.

    Features:
    - Basic or Bearer authentication on every call
    - Bounded timeout on every call (no call can hang a sync run)
    - Centralized error handling: every failure becomes UpstreamSyncError

    Usage:
        client = DirectoryClient("https://dav.example.com/", basic_auth=("user", "pw"))
        response = client.put("42.vcf", data=vcard, headers={"Content-Type": "text/vcard"})
    """

    def __init__(
        self,
        base_url: str,
        *,
        basic_auth: Optional[Tuple[str, str]] = None,
        bearer_token: Optional[str] = None,
        timeout: float = REQUEST_TIMEOUT,
        http: Any = None,
    ):
        """Initialize directory client.

        Args:
            base_url: Endpoint base URL; relative paths are appended to it
            basic_auth: (username, password) for HTTP Basic
            bearer_token: API key sent as Authorization: Bearer
            timeout: Seconds before a call is abandoned
            http: Object exposing ``request(method, url, **kwargs)``
                (defaults to the requests module)
        """
        self.base_url = base_url
        self.timeout = timeout
        self._basic_auth = basic_auth
        self._bearer_token = bearer_token
        self._http = http or requests

    def __repr__(self) -> str:
        return f"DirectoryClient(base_url={self.base_url!r}, timeout={self.timeout})"

    def url_for(self, path: str = "") -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}{path}"

    def request(
        self,
        method: str,
        path: str = "",
        *,
        allowed_statuses: Iterable[int] = (),
        **kwargs,
    ) -> requests.Response:
        """Execute a request with authentication and a bounded timeout.

        Args:
            method: HTTP method (GET, PUT, DELETE, PROPFIND...)
            path: Path relative to base_url, or an absolute URL
            allowed_statuses: Error statuses to treat as success (e.g. 404 on DELETE)
            **kwargs: Additional arguments for requests

        Returns:
            Response object

        Raises:
            UpstreamSyncError: On HTTP error, timeout or connection failure
        """
        url = self.url_for(path)
        headers = kwargs.pop("headers", {}) or {}
        headers.setdefault("User-Agent", USER_AGENT)
        if self._bearer_token:
            headers["Authorization"] = f"Bearer {self._bearer_token}"
        if self._basic_auth:
            kwargs["auth"] = self._basic_auth

        try:
            resp = self._http.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.Timeout:
            raise UpstreamSyncError(f"{method} timed out after {self.timeout}s", None, url) from None
        except requests.ConnectionError as exc:
            raise UpstreamSyncError(f"{method} failed: endpoint unreachable ({exc.__class__.__name__})", None, url) from None
        except requests.RequestException as exc:
            raise UpstreamSyncError(f"{method} failed: {exc.__class__.__name__}", None, url) from None

        self._handle_error(method, resp, url, allowed_statuses)
        return resp

    def get(self, path: str = "", params: Optional[dict] = None, **kwargs) -> requests.Response:
        return self.request("GET", path, params=params, **kwargs)

    def put(self, path: str, data: Any = None, **kwargs) -> requests.Response:
        return self.request("PUT", path, data=data, **kwargs)

    def delete(self, path: str, **kwargs) -> requests.Response:
        return self.request("DELETE", path, **kwargs)

    def propfind(self, path: str = "", body: str = "", depth: str = "0", **kwargs) -> requests.Response:
        headers = kwargs.pop("headers", {}) or {}
        headers.update({"Depth": depth, "Content-Type": "application/xml"})
        return self.request("PROPFIND", path, data=body.encode("utf-8"), headers=headers, **kwargs)

    def _handle_error(
        self,
        method: str,
        resp: requests.Response,
        url: str,
        allowed_statuses: Iterable[int],
    ) -> None:
        """Raise UpstreamSyncError if response status indicates error."""
        if resp.status_code >= 400 and resp.status_code not in set(allowed_statuses):
            reason = getattr(resp, "reason", "") or ""
            raise UpstreamSyncError(f"{method} failed {reason}".rstrip(), resp.status_code, url)
