"""External directory synchronization.

Architecture:
- client.py: HTTP client with auth headers, bounded timeouts and error mapping
- vcard.py: Contact → vCard 3.0 transformation
- carddav.py: CardDAV push connector (contacts)
- mosyle.py: Mosyle pull connector (devices)
- engine.py: sync_one / sync_all / test_connection over a connector

Usage:
    from directory_hub.core.sync import DirectorySyncEngine, CancelToken

    engine = DirectorySyncEngine("carddav", session_factory, integrations, ledger)
    engine.sync_one(contact, "update")
    run = engine.sync_all(cancel=CancelToken())
"""
from .carddav import CardDavConnector, normalize_carddav_url, normalize_password
from .client import REQUEST_TIMEOUT, DirectoryClient
from .engine import (
    AUTH_FAILED,
    REACHABLE,
    UNREACHABLE,
    CancelToken,
    ConnectionStatus,
    DirectorySyncEngine,
    ItemResult,
    SyncOutcome,
)
from .mosyle import MosyleConnector
from .vcard import VCardTransformer

__all__ = [
    "AUTH_FAILED",
    "REACHABLE",
    "REQUEST_TIMEOUT",
    "UNREACHABLE",
    "CancelToken",
    "CardDavConnector",
    "ConnectionStatus",
    "DirectoryClient",
    "DirectorySyncEngine",
    "ItemResult",
    "MosyleConnector",
    "SyncOutcome",
    "VCardTransformer",
    "normalize_carddav_url",
    "normalize_password",
]
