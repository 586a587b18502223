"""Typed workspace operations on top of RecordStore.

Staff, campaigns, projects, clients and activity logs, plus staff workload
analytics. Campaign creation and updates write an activity log entry.
Listing staff, campaigns and projects returns an empty list when the
provider call fails, so dashboards render without those tables.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar

import structlog
from pydantic import ValidationError

from src.zenith.integrations.errors import CRMError
from src.zenith.records.schemas import (
    ActivityAction,
    ActivityLog,
    AirtableModel,
    AirtableRecord,
    CampaignRecord,
    CampaignRecordStatus,
    ClientRecord,
    ClientStatus,
    ProjectRecord,
    ProjectStatus,
    ResourceType,
    StaffMember,
    WorkloadAnalytics,
)
from src.zenith.records.store import RecordStore, all_of, field_equals, field_in, link_contains

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=AirtableModel)

STAFF_TABLE = "Staff"
CAMPAIGNS_TABLE = "Campaigns"
PROJECTS_TABLE = "Projects"
CLIENTS_TABLE = "Clients"
ACTIVITY_LOGS_TABLE = "Activity_Logs"

OPEN_CAMPAIGN_STATUSES = (
    CampaignRecordStatus.DRAFT,
    CampaignRecordStatus.IN_REVIEW,
    CampaignRecordStatus.IN_PRODUCTION,
)
OPEN_PROJECT_STATUSES = (ProjectStatus.PLANNING, ProjectStatus.ACTIVE)
COMPLETION_ACTIONS = (ActivityAction.CAMPAIGN_APPROVED, ActivityAction.TASK_COMPLETED)

WEEKLY_CAPACITY_HOURS = 40.0
DEADLINE_WINDOW = timedelta(days=7)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _parse_all(model: type[ModelT], records: Sequence[AirtableRecord]) -> list[ModelT]:
    """Parse records, skipping rows whose cells do not fit the model."""
    parsed: list[ModelT] = []
    for record in records:
        try:
            parsed.append(model.from_record(record))
        except ValidationError as exc:
            logger.warning(
                "workspace.record_skipped",
                model=model.__name__,
                record_id=record.id,
                error=str(exc),
            )
    return parsed


class WorkspaceService:
    """Staff, campaign, project, client and activity records for one base."""

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    # ── Staff ───────────────────────────────────────────────────────────

    async def create_staff_member(self, staff: StaffMember) -> StaffMember:
        """Create a staff member. New members start active with neutral scores."""
        defaults = {"is_active": True, "workload_score": 0.0, "performance_rating": 3}
        for name, value in defaults.items():
            if getattr(staff, name) is None:
                staff = staff.model_copy(update={name: value})

        record = await self._store.create(STAFF_TABLE, staff.to_fields())
        return StaffMember.from_record(record)

    async def list_staff_members(self, active_only: bool = True) -> list[StaffMember]:
        try:
            records = await self._store.select(
                STAFF_TABLE,
                filter_by_formula="{Active} = 1" if active_only else None,
                sort=[("Name", "asc")],
            )
        except CRMError as exc:
            logger.warning("workspace.staff_unavailable", error=str(exc))
            return []
        return _parse_all(StaffMember, records)

    async def get_staff_member(self, staff_id: str) -> StaffMember | None:
        record = await self._store.get(STAFF_TABLE, staff_id)
        return StaffMember.from_record(record) if record else None

    async def update_staff_member(self, staff_id: str, updates: StaffMember) -> StaffMember:
        record = await self._store.update(STAFF_TABLE, staff_id, updates.to_fields())
        return StaffMember.from_record(record)

    # ── Campaigns ───────────────────────────────────────────────────────

    async def create_campaign(self, campaign: CampaignRecord) -> CampaignRecord:
        """Create a campaign and log "Campaign Created" for its creator."""
        record = await self._store.create(CAMPAIGNS_TABLE, campaign.to_fields())
        created = CampaignRecord.from_record(record)

        for staff_id in campaign.created_by or []:
            await self.log_activity(
                ActivityLog(
                    staff=[staff_id],
                    action=ActivityAction.CAMPAIGN_CREATED,
                    resource_id=created.id,
                    resource_type=ResourceType.CAMPAIGN,
                    details=f"Created campaign: {campaign.title}",
                )
            )
        return created

    async def list_campaigns(
        self,
        *,
        statuses: Sequence[CampaignRecordStatus] = (),
        assigned_to: str | None = None,
        client_id: str | None = None,
        project_id: str | None = None,
        limit: int = 100,
    ) -> list[CampaignRecord]:
        clauses = []
        if statuses:
            clauses.append(field_in("Status", [status.value for status in statuses]))
        if assigned_to:
            clauses.append(link_contains("Assigned Staff", assigned_to))
        if client_id:
            clauses.append(link_contains("Client", client_id))
        if project_id:
            clauses.append(link_contains("Project", project_id))

        try:
            records = await self._store.select(
                CAMPAIGNS_TABLE, filter_by_formula=all_of(clauses), max_records=limit
            )
        except CRMError as exc:
            logger.warning("workspace.campaigns_unavailable", error=str(exc))
            return []
        return _parse_all(CampaignRecord, records)

    async def update_campaign(
        self, campaign_id: str, updates: CampaignRecord, updated_by: str
    ) -> CampaignRecord:
        """Update a campaign and log "Campaign Updated" for ``updated_by``."""
        record = await self._store.update(CAMPAIGNS_TABLE, campaign_id, updates.to_fields())
        await self.log_activity(
            ActivityLog(
                staff=[updated_by],
                action=ActivityAction.CAMPAIGN_UPDATED,
                resource_id=campaign_id,
                resource_type=ResourceType.CAMPAIGN,
                details=f"Updated campaign: {updates.title or 'Unknown'}",
            )
        )
        return CampaignRecord.from_record(record)

    # ── Projects ────────────────────────────────────────────────────────

    async def create_project(self, project: ProjectRecord) -> ProjectRecord:
        record = await self._store.create(PROJECTS_TABLE, project.to_fields())
        return ProjectRecord.from_record(record)

    async def list_projects(
        self,
        *,
        statuses: Sequence[ProjectStatus] = (),
        managed_by: str | None = None,
        client_id: str | None = None,
    ) -> list[ProjectRecord]:
        clauses = []
        if statuses:
            clauses.append(field_in("Status", [status.value for status in statuses]))
        if managed_by:
            clauses.append(link_contains("Project Manager", managed_by))
        if client_id:
            clauses.append(link_contains("Client", client_id))

        try:
            records = await self._store.select(
                PROJECTS_TABLE,
                filter_by_formula=all_of(clauses),
                sort=[("Start Date", "desc")],
            )
        except CRMError as exc:
            logger.warning("workspace.projects_unavailable", error=str(exc))
            return []
        return _parse_all(ProjectRecord, records)

    # ── Clients ─────────────────────────────────────────────────────────

    async def create_client(self, client: ClientRecord) -> ClientRecord:
        record = await self._store.create(CLIENTS_TABLE, client.to_fields())
        return ClientRecord.from_record(record)

    async def list_clients(self, active_only: bool = True) -> list[ClientRecord]:
        records = await self._store.select(
            CLIENTS_TABLE,
            filter_by_formula=field_equals("Status", ClientStatus.ACTIVE.value) if active_only else None,
            sort=[("Company", "asc")],
        )
        return _parse_all(ClientRecord, records)

    # ── Activity ────────────────────────────────────────────────────────

    async def log_activity(self, activity: ActivityLog) -> ActivityLog:
        if activity.timestamp is None:
            activity = activity.model_copy(update={"timestamp": datetime.now(timezone.utc)})
        record = await self._store.create(ACTIVITY_LOGS_TABLE, activity.to_fields())
        return ActivityLog.from_record(record)

    async def list_activity_logs(
        self,
        *,
        staff_id: str | None = None,
        resource_type: ResourceType | None = None,
        resource_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 50,
    ) -> list[ActivityLog]:
        clauses = []
        if staff_id:
            clauses.append(link_contains("Staff", staff_id))
        if resource_type:
            clauses.append(field_equals("Resource Type", resource_type.value))
        if resource_id:
            clauses.append(field_equals("Resource ID", resource_id))
        if start:
            clauses.append(f"{{Timestamp}} >= '{_as_utc(start).isoformat()}'")
        if end:
            clauses.append(f"{{Timestamp}} <= '{_as_utc(end).isoformat()}'")

        records = await self._store.select(
            ACTIVITY_LOGS_TABLE,
            filter_by_formula=all_of(clauses),
            sort=[("Timestamp", "desc")],
            max_records=limit,
        )
        return _parse_all(ActivityLog, records)

    # ── Analytics ───────────────────────────────────────────────────────

    async def get_staff_workload(
        self, staff_id: str, now: datetime | None = None
    ) -> WorkloadAnalytics:
        """Workload and performance figures for one staff member.

        - completed_this_month: "Campaign Approved" / "Task Completed" logs
          since the first of the month
        - performance_score: 20 per completion, -10 per overdue item,
          +10 if anything is due within a week, clamped to 0-100
        - utilization_rate: estimated hours of open campaigns over a 40h
          week, capped at 100
        """
        now = _as_utc(now or datetime.now(timezone.utc))
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

        projects = await self.list_projects(statuses=OPEN_PROJECT_STATUSES, managed_by=staff_id)
        campaigns = await self.list_campaigns(statuses=OPEN_CAMPAIGN_STATUSES, assigned_to=staff_id)
        logs = await self.list_activity_logs(staff_id=staff_id, start=month_start, end=now)
        completed = await self.list_campaigns(
            statuses=[CampaignRecordStatus.COMPLETED], assigned_to=staff_id
        )

        completed_this_month = sum(1 for log in logs if log.action in COMPLETION_ACTIONS)

        average_hours = 0.0
        if completed:
            total = sum(c.actual_hours or c.estimated_hours or 0.0 for c in completed)
            average_hours = total / len(completed)

        due_dates = [_as_utc(c.due_date) for c in campaigns if c.due_date is not None]
        upcoming = sum(1 for due in due_dates if now < due <= now + DEADLINE_WINDOW)
        overdue = sum(1 for due in due_dates if due < now)

        performance = completed_this_month * 20 - overdue * 10 + (10 if upcoming else 0)
        estimated = sum(c.estimated_hours or 0.0 for c in campaigns)

        return WorkloadAnalytics(
            staff_id=staff_id,
            current_projects=len(projects),
            current_campaigns=len(campaigns),
            completed_this_month=completed_this_month,
            average_completion_hours=average_hours,
            performance_score=float(min(100, max(0, performance))),
            utilization_rate=min(100.0, estimated / WEEKLY_CAPACITY_HOURS * 100),
            upcoming_deadlines=upcoming,
            overdue_items=overdue,
        )

    async def update_all_staff_workloads(self) -> dict[str, Any]:
        """Recompute workload/performance for every active staff member.

        Returns:
            {"updated": int, "failed": [staff_id, ...]}
        """
        updated = 0
        failed: list[str] = []
        for staff in await self.list_staff_members():
            if not staff.id:
                continue
            try:
                workload = await self.get_staff_workload(staff.id)
                await self.update_staff_member(
                    staff.id,
                    StaffMember(
                        workload_score=workload.utilization_rate,
                        performance_rating=round(workload.performance_score / 20),
                    ),
                )
                updated += 1
            except CRMError as exc:
                logger.warning("workspace.workload_update_failed", staff_id=staff.id, error=str(exc))
                failed.append(staff.id)

        logger.info("workspace.workloads_updated", updated=updated, failed=len(failed))
        return {"updated": updated, "failed": failed}
