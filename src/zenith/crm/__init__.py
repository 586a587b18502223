"""CRM integration layer -- pluggable provider adapters for campaign sync.

Provides the CRMAdapter capability interface with concrete implementations:
- SalesforceAdapter: REST sObjects, composite batch, SOQL, describe
- AirtableAdapter: one table per entity type, meta-API introspection
- HubSpotAdapter: placeholder that reports "not implemented"
plus:
- FieldMapper: per-provider translation with an open custom_fields map
- ConnectionRegistry: persisted connection list, active resolution, adapter cache
- SyncOrchestrator: campaign sync, auto-sync and health check
"""

from src.zenith.crm.adapter import CRMAdapter
from src.zenith.crm.airtable import AirtableAdapter
from src.zenith.crm.factory import create_adapter
from src.zenith.crm.field_mapping import AirtableCampaignMapper, FieldMapper
from src.zenith.crm.hubspot import HubSpotAdapter
from src.zenith.crm.orchestrator import AutoSyncConfig, HealthReport, SyncOrchestrator
from src.zenith.crm.registry import ConnectionRegistry
from src.zenith.crm.salesforce import SalesforceAdapter

__all__ = [
    "CRMAdapter",
    "SalesforceAdapter",
    "AirtableAdapter",
    "HubSpotAdapter",
    "create_adapter",
    "FieldMapper",
    "AirtableCampaignMapper",
    "ConnectionRegistry",
    "SyncOrchestrator",
    "AutoSyncConfig",
    "HealthReport",
]
