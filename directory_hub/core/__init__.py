"""Core Business Logic Module

This module provides the sharing, vault and directory sync logic,
independent of HTTP frameworks.

Module Structure:
    - exceptions.py     : Error taxonomy (validation, gone, upstream, vault)
    - vault.py          : AES-GCM credential vault and tagged secret values
    - integrations.py   : Integration settings with secrets routed through the vault
    - share_links.py    : Share token issuance and atomic consumption
    - sync_ledger.py    : Sync run bookkeeping
    - sync/             : Directory client, connectors and the sync engine
    - audit.py          : Best-effort audit trail
    - scans.py          : Fire-and-forget scan enrichment

Usage Pattern:
    These modules are NOT auto-imported so CLI scripts can load a single
    service without pulling in Flask.

    Import explicitly when needed:
        from directory_hub.core.vault import CredentialVault
        from directory_hub.core.share_links import ShareTokenManager
        from directory_hub.core.sync_ledger import SyncLedger
        from directory_hub.core.sync import DirectorySyncEngine
        from directory_hub.core.audit import AuditTrail
"""
