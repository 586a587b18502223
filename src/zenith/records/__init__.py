"""Workspace records kept in Airtable: staff, campaigns, projects, clients, activity.

RecordStore is the generic table client; WorkspaceService is the typed
facade with activity logging and staff workload analytics.
"""

from src.zenith.records.service import WorkspaceService
from src.zenith.records.store import RecordStore

__all__ = ["RecordStore", "WorkspaceService"]
