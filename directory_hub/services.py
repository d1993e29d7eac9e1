"""Wiring of the core services from one AppConfig.

Shared by the Flask app factory and the operator scripts so both build the
vault, audit trail and ledgers the same way.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.orm import Session, sessionmaker

from directory_hub.config import AppConfig
from directory_hub.core.audit import AuditTrail
from directory_hub.core.integrations import IntegrationSettingsService
from directory_hub.core.scans import ScanRecorder
from directory_hub.core.share_links import ShareTokenManager
from directory_hub.core.sync import DirectorySyncEngine
from directory_hub.core.sync_ledger import SyncLedger
from directory_hub.core.vault import CredentialVault
from directory_hub.db import create_session_factory


@dataclass
class DirectoryServices:
    config: AppConfig
    session_factory: sessionmaker[Session]
    vault: CredentialVault
    audit: AuditTrail
    share_links: ShareTokenManager
    ledger: SyncLedger
    integrations: IntegrationSettingsService
    scans: ScanRecorder
    http: Any = None

    def sync_engine(self, kind: str) -> DirectorySyncEngine:
        return DirectorySyncEngine.from_settings(
            kind,
            self.config,
            self.session_factory,
            self.integrations,
            self.ledger,
            self.audit,
            http=self.http,
        )


def build_services(
    cfg: AppConfig,
    session_factory: Optional[sessionmaker[Session]] = None,
    http: Any = None,
    scans: Optional[ScanRecorder] = None,
) -> DirectoryServices:
    """Build every service. ``http`` replaces the outbound transport (tests)."""
    session_factory = session_factory or create_session_factory(cfg.database_url)
    vault = CredentialVault.from_settings(cfg)
    audit = AuditTrail(session_factory, cfg.audit_log_signing_key)
    return DirectoryServices(
        config=cfg,
        session_factory=session_factory,
        vault=vault,
        audit=audit,
        share_links=ShareTokenManager.from_settings(cfg, session_factory, audit),
        ledger=SyncLedger(session_factory, max_error_details=cfg.sync_max_error_details),
        integrations=IntegrationSettingsService(session_factory, vault, audit),
        scans=scans or ScanRecorder(
            session_factory, geolocation_enabled=cfg.scan_geolocation_enabled, http=http
        ),
        http=http,
    )
