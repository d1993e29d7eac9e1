"""Mosyle device-management pull connector."""
from __future__ import annotations
import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from directory_hub.db import utcnow
from directory_hub.models import Device
from ..exceptions import UpstreamSyncError, ValidationError
from .client import REQUEST_TIMEOUT, DirectoryClient

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://businessapi.mosyle.com"
DEVICES_PATH = "v1/devices"


class MosyleConnector:
    """Reads the device inventory and mirrors it into the devices table."""

    kind = "mosyle"
    direction = "pull"

    def __init__(self, client: DirectoryClient):
        self.client = client

    @classmethod
    def from_credentials(
        cls,
        credentials: dict[str, Any],
        timeout: float = REQUEST_TIMEOUT,
        http: Any = None,
    ) -> "MosyleConnector":
        base_url = (credentials.get("baseUrl") or DEFAULT_BASE_URL).strip().rstrip("/") + "/"
        client = DirectoryClient(base_url, bearer_token=credentials["apiKey"].strip(), timeout=timeout, http=http)
        return cls(client)

    @staticmethod
    def item_ref(payload: dict[str, Any]) -> str:
        serial = payload.get("serial_number") if isinstance(payload, dict) else None
        return f"device:{serial}" if serial else "device:<no serial>"

    def fetch_devices(self, params: Optional[dict] = None) -> list[dict[str, Any]]:
        """GET the device list.

        Raises:
            UpstreamSyncError: Request failed or the body is not the expected shape
        """
        resp = self.client.get(DEVICES_PATH, params=params)
        try:
            body = resp.json()
        except ValueError:
            raise UpstreamSyncError("Device list is not valid JSON", resp.status_code, self.client.url_for(DEVICES_PATH)) from None
        devices = body.get("devices") if isinstance(body, dict) else None
        if devices is None:
            return []
        if not isinstance(devices, list):
            raise UpstreamSyncError("Device list has an unexpected shape", resp.status_code, self.client.url_for(DEVICES_PATH))
        return devices

    def list_items(self, session_factory=None) -> list[dict[str, Any]]:
        return self.fetch_devices()

    @staticmethod
    def upsert_device(session: Session, payload: dict[str, Any]) -> Device:
        """Insert or update one device keyed by upper-cased serial number.

        Raises:
            ValidationError: Payload is not an object or has no serial number
        """
        if not isinstance(payload, dict):
            raise ValidationError("Device payload must be an object")
        serial = str(payload.get("serial_number") or "").strip().upper()
        if not serial:
            raise ValidationError("Device is missing serial_number")

        device = session.execute(select(Device).where(Device.serial_number == serial)).scalar_one_or_none()
        if device is None:
            device = Device(serial_number=serial)
            session.add(device)

        device.name = payload.get("name") or payload.get("device_name") or device.name or "Unknown Device"
        device.model = payload.get("model") or payload.get("device_model") or device.model
        device.os_version = payload.get("os_version") or payload.get("osversion") or device.os_version
        if payload.get("id") is not None:
            device.mosyle_device_id = str(payload["id"])
        device.sync_status = "synced"
        device.last_synced_at = utcnow()
        session.flush()
        return device

    def apply_item(self, session: Session, payload: dict[str, Any]) -> None:
        self.upsert_device(session, payload)

    def probe(self) -> Optional[UpstreamSyncError]:
        """Cheapest authenticated read; returns the failure or None when reachable."""
        try:
            self.client.get(DEVICES_PATH, params={"limit": 1})
        except UpstreamSyncError as exc:
            return exc
        return None
