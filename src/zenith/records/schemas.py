"""Pydantic schemas for workspace records stored in Airtable.

Attribute names are snake_case; each field's alias is the Airtable column
name, so ``to_fields()`` produces a request body and ``from_record()``
parses a response. Columns Airtable stores as text are converted on the way
in and out:
- JsonText: JSON serialized into a long-text column
- CommaList: list of strings stored as ``"a, b, c"``
Linked-record columns are lists of record ids.

Airtable omits empty cells (including unchecked checkboxes) from responses,
so every column is optional here.
"""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    JsonValue,
    PlainSerializer,
)


def _parse_json_text(value: Any) -> Any:
    if isinstance(value, str):
        if not value.strip():
            return None
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def _split_commas(value: Any) -> Any:
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return value


JsonText = Annotated[
    JsonValue,
    BeforeValidator(_parse_json_text),
    PlainSerializer(lambda value: json.dumps(value), return_type=str),
]

CommaList = Annotated[
    list[str],
    BeforeValidator(_split_commas),
    PlainSerializer(lambda value: ", ".join(value), return_type=str),
]


# ── Enums ───────────────────────────────────────────────────────────────────


class StaffRole(str, Enum):
    ADMIN = "Admin"
    MANAGER = "Manager"
    CREATOR = "Creator"
    VIEWER = "Viewer"


class CampaignRecordStatus(str, Enum):
    DRAFT = "Draft"
    IN_REVIEW = "In Review"
    APPROVED = "Approved"
    IN_PRODUCTION = "In Production"
    COMPLETED = "Completed"
    ARCHIVED = "Archived"


class Priority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    URGENT = "Urgent"


class ProjectStatus(str, Enum):
    PLANNING = "Planning"
    ACTIVE = "Active"
    ON_HOLD = "On Hold"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class ClientStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    PROSPECT = "Prospect"


class ActivityAction(str, Enum):
    CAMPAIGN_CREATED = "Campaign Created"
    CAMPAIGN_UPDATED = "Campaign Updated"
    CAMPAIGN_APPROVED = "Campaign Approved"
    PROJECT_ASSIGNED = "Project Assigned"
    TASK_COMPLETED = "Task Completed"
    CLIENT_CONTACT = "Client Contact"
    FILE_UPLOADED = "File Uploaded"


class ResourceType(str, Enum):
    CAMPAIGN = "Campaign"
    PROJECT = "Project"
    CLIENT = "Client"
    TASK = "Task"


# ── Raw Record ──────────────────────────────────────────────────────────────


class AirtableRecord(BaseModel):
    """A record as returned by the Airtable REST API."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    fields: dict[str, JsonValue] = Field(default_factory=dict)
    created_time: datetime | None = Field(default=None, alias="createdTime")


# ── Typed Records ───────────────────────────────────────────────────────────


class AirtableModel(BaseModel):
    """Base for typed records: aliases are Airtable column names."""

    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    created_at: datetime | None = None

    def to_fields(self) -> dict[str, Any]:
        """Airtable ``fields`` body for this record (unset columns omitted)."""
        return self.model_dump(
            mode="json", by_alias=True, exclude_none=True, exclude={"id", "created_at"}
        )

    @classmethod
    def from_record(cls, record: AirtableRecord) -> Any:
        return cls.model_validate(
            {**record.fields, "id": record.id, "created_at": record.created_time}
        )


class StaffMember(AirtableModel):
    email: str | None = Field(default=None, alias="Email")
    name: str | None = Field(default=None, alias="Name")
    role: StaffRole | None = Field(default=None, alias="Role")
    department: str | None = Field(default=None, alias="Department")
    phone: str | None = Field(default=None, alias="Phone")
    assigned_projects: list[str] | None = Field(default=None, alias="Assigned Projects")
    is_active: bool | None = Field(default=None, alias="Active")
    workload_score: float | None = Field(default=None, alias="Workload Score")
    performance_rating: int | None = Field(default=None, alias="Performance Rating")
    last_activity: datetime | None = Field(default=None, alias="Last Activity")


class CampaignRecord(AirtableModel):
    title: str | None = Field(default=None, alias="Title")
    description: str | None = Field(default=None, alias="Description")
    status: CampaignRecordStatus | None = Field(default=None, alias="Status")
    priority: Priority | None = Field(default=None, alias="Priority")
    client_ids: list[str] | None = Field(default=None, alias="Client")
    assigned_staff: list[str] | None = Field(default=None, alias="Assigned Staff")
    created_by: list[str] | None = Field(default=None, alias="Created By")
    due_date: datetime | None = Field(default=None, alias="Due Date")
    budget: float | None = Field(default=None, alias="Budget")
    tags: CommaList | None = Field(default=None, alias="Tags")
    campaign_data: JsonText | None = Field(default=None, alias="Campaign Data")
    project_ids: list[str] | None = Field(default=None, alias="Project")
    estimated_hours: float | None = Field(default=None, alias="Estimated Hours")
    actual_hours: float | None = Field(default=None, alias="Actual Hours")
    completion_percentage: float | None = Field(default=None, alias="Completion Percentage")


class ProjectRecord(AirtableModel):
    name: str | None = Field(default=None, alias="Name")
    description: str | None = Field(default=None, alias="Description")
    client_ids: list[str] | None = Field(default=None, alias="Client")
    status: ProjectStatus | None = Field(default=None, alias="Status")
    start_date: datetime | None = Field(default=None, alias="Start Date")
    end_date: datetime | None = Field(default=None, alias="End Date")
    budget: float | None = Field(default=None, alias="Budget")
    assigned_staff: list[str] | None = Field(default=None, alias="Assigned Staff")
    project_manager: list[str] | None = Field(default=None, alias="Project Manager")
    milestones: JsonText | None = Field(default=None, alias="Milestones")


class ClientRecord(AirtableModel):
    name: str | None = Field(default=None, alias="Name")
    email: str | None = Field(default=None, alias="Email")
    phone: str | None = Field(default=None, alias="Phone")
    company: str | None = Field(default=None, alias="Company")
    industry: str | None = Field(default=None, alias="Industry")
    contact_person: str | None = Field(default=None, alias="Contact Person")
    brand_kit: JsonText | None = Field(default=None, alias="Brand Kit")
    account_manager: list[str] | None = Field(default=None, alias="Account Manager")
    last_contact: datetime | None = Field(default=None, alias="Last Contact")
    notes: str | None = Field(default=None, alias="Notes")
    status: ClientStatus | None = Field(default=None, alias="Status")


class ActivityLog(AirtableModel):
    staff: list[str] | None = Field(default=None, alias="Staff")
    action: ActivityAction | None = Field(default=None, alias="Action")
    resource_id: str | None = Field(default=None, alias="Resource ID")
    resource_type: ResourceType | None = Field(default=None, alias="Resource Type")
    details: str | None = Field(default=None, alias="Details")
    metadata: JsonText | None = Field(default=None, alias="Metadata")
    timestamp: datetime | None = Field(default=None, alias="Timestamp")
    ip_address: str | None = Field(default=None, alias="IP Address")
    user_agent: str | None = Field(default=None, alias="User Agent")


# ── Analytics ───────────────────────────────────────────────────────────────


class WorkloadAnalytics(BaseModel):
    """Staff workload snapshot.

    Attributes:
        average_completion_hours: Mean actual (else estimated) hours of
            completed campaigns.
        performance_score: 0-100.
        utilization_rate: 0-100, estimated hours of open campaigns against
            a 40h week.
    """

    staff_id: str
    current_projects: int = 0
    current_campaigns: int = 0
    completed_this_month: int = 0
    average_completion_hours: float = 0.0
    performance_score: float = 0.0
    utilization_rate: float = 0.0
    upcoming_deadlines: int = 0
    overdue_items: int = 0
