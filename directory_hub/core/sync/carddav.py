"""CardDAV push connector: contacts become vCards on a remote address book."""
from __future__ import annotations
import logging
import re
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from directory_hub.db import session_scope
from directory_hub.models import Contact
from ..exceptions import IntegrationError, UpstreamSyncError, ValidationError
from .client import REQUEST_TIMEOUT, DirectoryClient
from .vcard import VCardTransformer

logger = logging.getLogger(__name__)

PUSH_ACTIONS = ("create", "update", "delete")
GOOGLE_CARDDAV_HOST = "www.googleapis.com/carddav"
GOOGLE_PRINCIPAL_URL = "https://www.googleapis.com/carddav/v1/principals/{username}/lists/default/"
PROPFIND_BODY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:"><d:prop><d:displayname/><d:resourcetype/></d:prop></d:propfind>'
)

_GOOGLE_DISCOVERY = re.compile(r"^https?://(www\.)?google\.com/\.well-known/carddav/?$", re.IGNORECASE)


def normalize_password(password: str) -> str:
    """App passwords are shown grouped ("abcd efgh ijkl mnop"); servers want them joined."""
    return re.sub(r"\s+", "", password or "")


def normalize_carddav_url(url: str, username: str) -> str:
    """Resolve Google discovery URLs to the principal's default address book.

    Any URL is returned with a trailing slash so ``<id>.vcf`` can be appended.
    """
    url = (url or "").strip()
    if not url:
        raise IntegrationError("CardDAV url is not configured")
    is_google = _GOOGLE_DISCOVERY.match(url) or (
        GOOGLE_CARDDAV_HOST in url and "/lists/" not in url
    )
    if is_google:
        url = GOOGLE_PRINCIPAL_URL.format(username=username.strip())
    if not url.endswith("/"):
        url += "/"
    return url


class CardDavConnector:
    """Pushes contacts to a CardDAV address book.

    Usage:
        connector = CardDavConnector.from_credentials(creds)
        connector.push(contact, "update")
    """

    kind = "carddav"
    direction = "push"

    def __init__(self, client: DirectoryClient):
        self.client = client

    @classmethod
    def from_credentials(
        cls,
        credentials: dict[str, Any],
        timeout: float = REQUEST_TIMEOUT,
        http: Any = None,
    ) -> "CardDavConnector":
        username = (credentials.get("username") or "").strip()
        base_url = normalize_carddav_url(credentials.get("url", ""), username)
        password = normalize_password(credentials.get("password", ""))
        client = DirectoryClient(base_url, basic_auth=(username, password), timeout=timeout, http=http)
        return cls(client)

    @staticmethod
    def card_path(record_id: Any) -> str:
        return f"{record_id}.vcf"

    @staticmethod
    def item_ref(contact: Contact) -> str:
        name = VCardTransformer.full_name(contact)
        return f"contact:{contact.id}" + (f" ({name})" if name else "")

    def push(self, contact: Any, action: str) -> None:
        """Create/update (PUT) or delete (DELETE) one contact card.

        ``contact`` may be a Contact or, for ``delete``, just its id.

        Raises:
            ValidationError: Unknown action or contact missing required fields
            UpstreamSyncError: Non-success response, timeout or unreachable server
        """
        if action not in PUSH_ACTIONS:
            raise ValidationError(f"Invalid sync action: {action}")

        record_id = getattr(contact, "id", contact)
        path = self.card_path(record_id)
        if action == "delete":
            # Already gone remotely counts as deleted
            self.client.delete(path, allowed_statuses=(404, 410))
            logger.info("Deleted contact %s from CardDAV", record_id)
            return

        vcard = VCardTransformer.contact_to_vcard(contact)
        self.client.put(path, data=vcard.encode("utf-8"), headers={"Content-Type": "text/vcard; charset=utf-8"})
        logger.info("Pushed contact %s to CardDAV (%s)", record_id, action)

    def list_items(self, session_factory: sessionmaker[Session]) -> list[Contact]:
        """Local contacts to push in a full sync, oldest first."""
        with session_scope(session_factory) as session:
            return list(session.execute(select(Contact).order_by(Contact.id)).scalars().all())

    def probe(self) -> Optional[UpstreamSyncError]:
        """PROPFIND the address book; returns the failure or None when reachable."""
        try:
            self.client.propfind("", body=PROPFIND_BODY, depth="0")
        except UpstreamSyncError as exc:
            return exc
        return None
