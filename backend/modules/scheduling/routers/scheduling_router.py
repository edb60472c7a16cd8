# backend/modules/scheduling/routers/scheduling_router.py

from datetime import date
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from core.database import get_db
from ..enums.scheduling_enums import AssignmentStatus, Weekday
from ..schemas.scheduling_schemas import (
    AdHocScheduledShiftCreate,
    AssignmentsGroupedResponse,
    BulkAssignReport,
    BulkAssignRequest,
    ChangeRequest,
    ConflictCheckRequest,
    ConflictCheckResponse,
    CopyWeekRequest,
    CopyWeekResult,
    FulfillmentResult,
    LeaveApprovedEvent,
    LeaveCancelledEvent,
    LeaveReconciliationResult,
    PublishRequest,
    PublishResult,
    ReplacementCandidate,
    ScheduledShiftCreate,
    ScheduledShiftDeleteResponse,
    ScheduledShiftGroupedResponse,
    ScheduledShiftResponse,
    ScheduleLockCreate,
    ScheduleLockResponse,
    ScheduleOverview,
    ScheduleUnlockRequest,
    ShiftTemplateCreate,
    ShiftTemplateResponse,
    ShiftTemplateUpdate,
    StaffResponseRequest,
    StaffShiftCreate,
    StaffShiftResponse,
    StaffShiftUpdate,
    StatusTransitionRequest,
)
from ..services.assignment_service import AssignmentService
from ..services.bulk_operations_service import BulkOperationsService
from ..services.conflict_service import ConflictService
from ..services.fulfillment_service import FulfillmentService
from ..services.leave_reconciliation_service import LeaveReconciliationService
from ..services.occurrence_service import OccurrenceService
from ..services.schedule_lock_service import ScheduleLockService
from ..services.schedule_view_service import ScheduleViewService
from ..services.shift_template_service import ShiftTemplateService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/scheduling", tags=["Scheduling"])


def get_template_service(db: Session = Depends(get_db)) -> ShiftTemplateService:
    return ShiftTemplateService(db)


def get_occurrence_service(db: Session = Depends(get_db)) -> OccurrenceService:
    return OccurrenceService(db)


def get_assignment_service(db: Session = Depends(get_db)) -> AssignmentService:
    return AssignmentService(db)


def get_bulk_service(db: Session = Depends(get_db)) -> BulkOperationsService:
    return BulkOperationsService(db)


def get_lock_service(db: Session = Depends(get_db)) -> ScheduleLockService:
    return ScheduleLockService(db)


def get_view_service(db: Session = Depends(get_db)) -> ScheduleViewService:
    return ScheduleViewService(db)


# Shift Template Endpoints
@router.post("/templates", response_model=ShiftTemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_template(
    template: ShiftTemplateCreate,
    service: ShiftTemplateService = Depends(get_template_service),
):
    """Create a recurring shift template for a branch"""
    return service.create_template(template)


@router.get("/templates", response_model=List[ShiftTemplateResponse])
async def list_templates(
    branch_id: int = Query(..., gt=0),
    include_inactive: bool = False,
    service: ShiftTemplateService = Depends(get_template_service),
):
    return service.list_templates(branch_id, include_inactive)


@router.get("/templates/active", response_model=List[ShiftTemplateResponse])
async def list_active_templates(
    branch_id: int = Query(..., gt=0),
    weekday: Weekday = Query(...),
    service: ShiftTemplateService = Depends(get_template_service),
):
    """ACTIVE templates of the branch that run on the given weekday"""
    return service.list_active_templates(branch_id, weekday)


@router.get("/templates/{template_id}", response_model=ShiftTemplateResponse)
async def get_template(
    template_id: int,
    service: ShiftTemplateService = Depends(get_template_service),
):
    return service.get_template(template_id)


@router.put("/templates/{template_id}", response_model=ShiftTemplateResponse)
async def update_template(
    template_id: int,
    template: ShiftTemplateUpdate,
    service: ShiftTemplateService = Depends(get_template_service),
):
    """Update a template; existing scheduled shifts keep their requirements"""
    return service.update_template(template_id, template)


@router.post("/templates/{template_id}/deactivate", response_model=ShiftTemplateResponse)
async def deactivate_template(
    template_id: int,
    service: ShiftTemplateService = Depends(get_template_service),
):
    return service.deactivate_template(template_id)


# Scheduled Shift Endpoints
@router.post("/occurrences", response_model=ScheduledShiftResponse, status_code=status.HTTP_201_CREATED)
async def create_occurrence(
    data: ScheduledShiftCreate,
    service: OccurrenceService = Depends(get_occurrence_service),
):
    """Schedule a template on a branch date"""
    return service.create_occurrence(data.template_id, data.branch_id, data.date, data.created_by_id)


@router.post("/occurrences/ad-hoc", response_model=ScheduledShiftResponse, status_code=status.HTTP_201_CREATED)
async def create_ad_hoc_occurrence(
    data: AdHocScheduledShiftCreate,
    service: OccurrenceService = Depends(get_occurrence_service),
):
    """Schedule a one-off shift without a template"""
    return service.create_ad_hoc_occurrence(data)


@router.get("/occurrences", response_model=List[ScheduledShiftResponse])
async def list_occurrences(
    branch_id: int = Query(..., gt=0),
    start_date: date = Query(...),
    end_date: date = Query(...),
    service: OccurrenceService = Depends(get_occurrence_service),
):
    return service.list_occurrences(branch_id, start_date, end_date)


@router.get("/occurrences/grouped", response_model=List[ScheduledShiftGroupedResponse])
async def list_occurrences_grouped(
    branch_id: int = Query(..., gt=0),
    start_date: date = Query(...),
    end_date: date = Query(...),
    service: OccurrenceService = Depends(get_occurrence_service),
):
    """Scheduled shifts grouped by date"""
    return service.list_occurrences_grouped_by_date(branch_id, start_date, end_date)


@router.get("/occurrences/{occurrence_id}", response_model=ScheduledShiftResponse)
async def get_occurrence(
    occurrence_id: int,
    service: OccurrenceService = Depends(get_occurrence_service),
):
    return service.get_occurrence(occurrence_id)


@router.delete("/occurrences/{occurrence_id}", response_model=ScheduledShiftDeleteResponse)
async def delete_occurrence(
    occurrence_id: int,
    service: OccurrenceService = Depends(get_occurrence_service),
):
    """Delete a scheduled shift together with its assignments"""
    removed = service.delete_occurrence(occurrence_id)
    return ScheduledShiftDeleteResponse(scheduled_shift_id=occurrence_id, assignments_removed=removed)


@router.get("/occurrences/{occurrence_id}/fulfillment", response_model=FulfillmentResult)
async def evaluate_fulfillment(occurrence_id: int, db: Session = Depends(get_db)):
    """Assigned versus required headcount per role"""
    return FulfillmentService(db).evaluate(occurrence_id)


@router.get("/occurrences/{occurrence_id}/conflicts", response_model=ConflictCheckResponse)
async def preview_conflicts(
    occurrence_id: int,
    staff_id: int = Query(..., gt=0),
    db: Session = Depends(get_db),
):
    """Overlapping assignments the staff member would collide with"""
    occurrence = OccurrenceService(db).get_occurrence(occurrence_id)
    return ConflictService(db).preview(occurrence, staff_id)


# Assignment Endpoints
@router.post("/assignments", response_model=StaffShiftResponse, status_code=status.HTTP_201_CREATED)
async def create_assignment(
    data: StaffShiftCreate,
    service: AssignmentService = Depends(get_assignment_service),
):
    """Assign a staff member to a scheduled shift"""
    return service.assign(
        data.scheduled_shift_id,
        data.staff_id,
        note=data.note,
        strict=data.strict,
        created_by_id=data.created_by_id,
    )


@router.get("/assignments", response_model=List[StaffShiftResponse])
async def list_assignments(
    branch_id: int = Query(..., gt=0),
    start_date: date = Query(...),
    end_date: date = Query(...),
    staff_id: Optional[int] = Query(None, gt=0),
    status_filter: Optional[List[AssignmentStatus]] = Query(None, alias="status"),
    service: AssignmentService = Depends(get_assignment_service),
):
    return service.list_assignments(branch_id, start_date, end_date, staff_id, status_filter)


@router.get("/assignments/grouped", response_model=AssignmentsGroupedResponse)
async def list_assignments_grouped(
    branch_id: int = Query(..., gt=0),
    start_date: date = Query(...),
    end_date: date = Query(...),
    status_filter: Optional[List[AssignmentStatus]] = Query(None, alias="status"),
    service: ScheduleViewService = Depends(get_view_service),
):
    """Assignments grouped by role, then staff, then date"""
    grouped = service.assignments_grouped_by_role_and_staff(
        branch_id, start_date, end_date, status_filter
    )
    return AssignmentsGroupedResponse(
        data={
            role_id: {
                staff_id: {
                    day: [StaffShiftResponse.model_validate(a) for a in assignments]
                    for day, assignments in by_date.items()
                }
                for staff_id, by_date in by_staff.items()
            }
            for role_id, by_staff in grouped.items()
        }
    )


@router.get("/assignments/{assignment_id}", response_model=StaffShiftResponse)
async def get_assignment(
    assignment_id: int,
    service: AssignmentService = Depends(get_assignment_service),
):
    return service.get_assignment(assignment_id)


@router.put("/assignments/{assignment_id}", response_model=StaffShiftResponse)
async def update_assignment(
    assignment_id: int,
    data: StaffShiftUpdate,
    service: AssignmentService = Depends(get_assignment_service),
):
    """Edit an assignment's note"""
    return service.update_assignment(assignment_id, data)


@router.get(
    "/assignments/{assignment_id}/replacement-candidates",
    response_model=List[ReplacementCandidate],
)
async def list_replacement_candidates(
    assignment_id: int,
    service: AssignmentService = Depends(get_assignment_service),
):
    """Same-role staff free to take over the assignment"""
    return service.replacement_candidates(assignment_id)


@router.put(
    "/assignments/{assignment_id}/replace-staff/{new_staff_id}",
    response_model=StaffShiftResponse,
)
async def replace_assignment_staff(
    assignment_id: int,
    new_staff_id: int,
    service: AssignmentService = Depends(get_assignment_service),
):
    """Hand a conflicted or change-requested assignment to another staff member"""
    return service.replace_staff(assignment_id, new_staff_id)


@router.delete("/assignments/{assignment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_assignment(
    assignment_id: int,
    manager_override: bool = False,
    service: AssignmentService = Depends(get_assignment_service),
):
    service.delete_assignment(assignment_id, manager_override=manager_override)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/assignments/{assignment_id}/status", response_model=StaffShiftResponse)
async def transition_assignment(
    assignment_id: int,
    data: StatusTransitionRequest,
    service: AssignmentService = Depends(get_assignment_service),
):
    """Manager status edit (DRAFT, PENDING or REQUEST_CHANGE)"""
    return service.transition(assignment_id, data.status, data.reason)


@router.post("/assignments/{assignment_id}/pending", response_model=StaffShiftResponse)
async def mark_assignment_pending(
    assignment_id: int,
    service: AssignmentService = Depends(get_assignment_service),
):
    return service.mark_pending(assignment_id)


@router.post("/assignments/{assignment_id}/unpublish", response_model=StaffShiftResponse)
async def unpublish_assignment(
    assignment_id: int,
    service: AssignmentService = Depends(get_assignment_service),
):
    return service.unpublish(assignment_id)


@router.post("/assignments/{assignment_id}/reset", response_model=StaffShiftResponse)
async def reset_assignment(
    assignment_id: int,
    service: AssignmentService = Depends(get_assignment_service),
):
    return service.reset_to_draft(assignment_id)


@router.post("/assignments/{assignment_id}/request-change", response_model=StaffShiftResponse)
async def request_assignment_change(
    assignment_id: int,
    data: ChangeRequest,
    service: AssignmentService = Depends(get_assignment_service),
):
    """Staff member asks for a change to their assignment"""
    return service.request_change(assignment_id, data.staff_id, data.reason)


@router.post("/assignments/{assignment_id}/respond", response_model=StaffShiftResponse)
async def respond_to_assignment(
    assignment_id: int,
    data: StaffResponseRequest,
    service: AssignmentService = Depends(get_assignment_service),
):
    """Staff member accepts or rejects a published assignment"""
    return service.respond(assignment_id, data.staff_id, data.accept, data.reason)


# Conflict Endpoints
@router.post("/conflicts/check", response_model=ConflictCheckResponse)
async def check_conflict(data: ConflictCheckRequest, db: Session = Depends(get_db)):
    conflicts = ConflictService(db).find_conflicts(
        data.staff_id,
        data.date,
        data.start_time,
        data.end_time,
        exclude_assignment_id=data.exclude_assignment_id,
    )
    return ConflictCheckResponse(
        has_conflict=bool(conflicts),
        conflicting_assignment_ids=[a.id for a in conflicts],
    )


# Bulk Operation Endpoints
@router.post("/bulk-assign", response_model=BulkAssignReport)
async def bulk_assign(
    request: BulkAssignRequest,
    service: BulkOperationsService = Depends(get_bulk_service),
):
    """Assign staff across a date range; per-pair failures are reported, not raised"""
    return service.bulk_assign(request)


@router.post("/copy-week", response_model=CopyWeekResult)
async def copy_week(
    request: CopyWeekRequest,
    service: BulkOperationsService = Depends(get_bulk_service),
):
    """Copy a week's schedule onto other weeks, skipping shifts that already exist"""
    return service.copy_week(request)


@router.post("/publish", response_model=PublishResult)
async def publish_schedule(
    request: PublishRequest,
    service: BulkOperationsService = Depends(get_bulk_service),
):
    return service.publish(request)


# Leave Event Endpoints
@router.post("/leave/approved", response_model=LeaveReconciliationResult)
async def leave_approved(event: LeaveApprovedEvent, db: Session = Depends(get_db)):
    return LeaveReconciliationService(db).handle_leave_approved(event)


@router.post("/leave/cancelled", response_model=LeaveReconciliationResult)
async def leave_cancelled(event: LeaveCancelledEvent, db: Session = Depends(get_db)):
    return LeaveReconciliationService(db).handle_leave_cancelled(event)


# Schedule Lock Endpoints
@router.post("/locks", response_model=ScheduleLockResponse, status_code=status.HTTP_201_CREATED)
async def lock_schedule(
    data: ScheduleLockCreate,
    service: ScheduleLockService = Depends(get_lock_service),
):
    """Freeze a branch's schedule for a date range"""
    return service.lock(data)


@router.post("/locks/{lock_id}/unlock", response_model=ScheduleLockResponse)
async def unlock_schedule(
    lock_id: int,
    data: ScheduleUnlockRequest,
    service: ScheduleLockService = Depends(get_lock_service),
):
    return service.unlock(lock_id, data)


@router.get("/locks", response_model=List[ScheduleLockResponse])
async def list_locks(
    branch_id: int = Query(..., gt=0),
    start_date: date = Query(...),
    end_date: date = Query(...),
    active_only: bool = False,
    service: ScheduleLockService = Depends(get_lock_service),
):
    return service.locks_in_range(branch_id, start_date, end_date, active_only)


@router.get("/locks/{lock_id}", response_model=ScheduleLockResponse)
async def get_lock(
    lock_id: int,
    service: ScheduleLockService = Depends(get_lock_service),
):
    return service.get_lock(lock_id)


# Overview
@router.get("/overview", response_model=ScheduleOverview)
async def schedule_overview(
    branch_id: int = Query(..., gt=0),
    start_date: date = Query(...),
    end_date: date = Query(...),
    service: ScheduleViewService = Depends(get_view_service),
):
    """Status breakdown and understaffed shifts for a date range"""
    return service.schedule_overview(branch_id, start_date, end_date)
