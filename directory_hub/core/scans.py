"""Scan enrichment for publicly viewed contacts.

Recording a scan never delays or fails the public response: the work runs
on a background executor and every error is logged and dropped.
"""
from __future__ import annotations
import ipaddress
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Mapping, Optional

import requests
import user_agents
from sqlalchemy.orm import Session, sessionmaker

from directory_hub.db import session_scope
from directory_hub.models import ContactScan

logger = logging.getLogger(__name__)

GEO_TIMEOUT = 4
IP_API_URL = "http://ip-api.com/json/{ip}?fields=status,message,country,regionName,city"
IPAPI_CO_URL = "https://ipapi.co/{ip}/json/"

LOCAL_NETWORK = {"country": "Local Network", "region": None, "city": None}
UNKNOWN_LOCATION = {"country": "Unknown", "region": None, "city": None}
PRIVATE_NETWORKS = tuple(
    ipaddress.ip_network(net) for net in ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16")
)


def client_ip(headers: Mapping[str, str], remote_addr: Optional[str]) -> Optional[str]:
    """Best-effort client address behind a reverse proxy."""
    forwarded = (headers.get("X-Forwarded-For") or "").split(",")[0].strip()
    ip = forwarded or (headers.get("X-Real-IP") or "").strip() or (remote_addr or "").strip()
    if ip.lower().startswith("::ffff:"):
        ip = ip[7:]
    return ip or None


def is_private_ip(ip: str) -> bool:
    """RFC 1918 ranges and loopback only."""
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return addr.is_loopback or any(addr in net for net in PRIVATE_NETWORKS)


def parse_user_agent(user_agent: Optional[str]) -> dict[str, str]:
    """Coarse device type, browser and OS from a User-Agent header."""
    if not user_agent:
        return {"device_type": "unknown", "browser": "Unknown", "os": "Unknown"}

    ua = user_agents.parse(user_agent)
    if ua.is_tablet:
        device_type = "tablet"
    elif ua.is_mobile:
        device_type = "mobile"
    elif ua.is_bot:
        device_type = "bot"
    else:
        device_type = "desktop"

    browser = "Unknown"
    if ua.browser.family and ua.browser.family != "Other":
        major = ua.browser.version[0] if ua.browser.version else None
        browser = f"{ua.browser.family} {major}" if major is not None else ua.browser.family

    os_name = ua.os.family if ua.os.family and ua.os.family != "Other" else "Unknown"
    return {"device_type": device_type, "browser": browser, "os": os_name}


class ScanRecorder:
    """Records contact scans with location and device details in the background."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        geolocation_enabled: bool = True,
        timeout: float = GEO_TIMEOUT,
        http: Any = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self._session_factory = session_factory
        self.geolocation_enabled = geolocation_enabled
        self.timeout = timeout
        self._http = http or requests
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="scan")

    def record_scan(self, contact_id: Any, ip: Optional[str], user_agent: Optional[str]) -> Future:
        """Schedule enrichment + insert; returns immediately with the task's Future."""
        return self._executor.submit(self._record, str(contact_id), ip, user_agent)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _record(self, contact_id: str, ip: Optional[str], user_agent: Optional[str]) -> Optional[int]:
        try:
            location = self.lookup_location(ip)
            device = parse_user_agent(user_agent)
            with session_scope(self._session_factory) as session:
                scan = ContactScan(
                    contact_id=contact_id,
                    ip=ip,
                    country=location["country"],
                    region=location["region"],
                    city=location["city"],
                    device_type=device["device_type"],
                    browser=device["browser"],
                    os=device["os"],
                    user_agent=(user_agent or "")[:1000] or None,
                )
                session.add(scan)
                session.flush()
                scan_id = scan.id
            logger.info("Recorded scan %s for contact %s (%s)", scan_id, contact_id, location["country"])
            return scan_id
        except Exception:
            logger.exception("Failed to record scan for contact %s", contact_id)
            return None

    def lookup_location(self, ip: Optional[str]) -> dict[str, Optional[str]]:
        """Resolve country/region/city. Never raises."""
        if not ip:
            return dict(UNKNOWN_LOCATION)
        if is_private_ip(ip):
            return dict(LOCAL_NETWORK)
        if not self.geolocation_enabled:
            return dict(UNKNOWN_LOCATION)

        try:
            resp = self._http.get(IP_API_URL.format(ip=ip), timeout=self.timeout)
            data = resp.json()
            if data.get("status") == "success":
                return {"country": data.get("country") or "Unknown", "region": data.get("regionName"), "city": data.get("city")}
        except (requests.RequestException, ValueError, AttributeError) as exc:
            logger.debug("ip-api.com lookup failed for %s: %s", ip, exc)

        try:
            resp = self._http.get(IPAPI_CO_URL.format(ip=ip), timeout=self.timeout)
            data = resp.json()
            if not data.get("error"):
                return {"country": data.get("country_name") or "Unknown", "region": data.get("region"), "city": data.get("city")}
        except (requests.RequestException, ValueError, AttributeError) as exc:
            logger.debug("ipapi.co lookup failed for %s: %s", ip, exc)

        return dict(UNKNOWN_LOCATION)
