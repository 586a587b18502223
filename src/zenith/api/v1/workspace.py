"""REST API endpoints for workspace staff and workload analytics."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from src.zenith.api.deps import get_workspace
from src.zenith.records.schemas import StaffMember, WorkloadAnalytics
from src.zenith.records.service import WorkspaceService

router = APIRouter(prefix="/workspace", tags=["workspace"])


@router.get("/staff", response_model=list[StaffMember], response_model_by_alias=False)
async def list_staff(
    active_only: bool = True,
    workspace: WorkspaceService = Depends(get_workspace),
) -> list[StaffMember]:
    return await workspace.list_staff_members(active_only=active_only)


@router.get("/staff/{staff_id}/workload", response_model=WorkloadAnalytics)
async def get_staff_workload(
    staff_id: str,
    workspace: WorkspaceService = Depends(get_workspace),
) -> WorkloadAnalytics:
    """Current workload, deadlines and performance score for one staff member."""
    staff = await workspace.get_staff_member(staff_id)
    if staff is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Staff member not found: {staff_id}",
        )
    return await workspace.get_staff_workload(staff_id)
