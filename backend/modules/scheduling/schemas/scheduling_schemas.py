from datetime import date, datetime, time
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..enums.scheduling_enums import (
    AssignmentStatus,
    ScheduleLockStatus,
    TemplateStatus,
    Weekday,
)


class DateRangeMixin(BaseModel):
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def validate_date_range(self):
        if self.end_date < self.start_date:
            raise ValueError("End date must not be before start date")
        return self


# Shift Template Schemas
class RequirementSchema(BaseModel):
    """Headcount required for one role"""

    role_id: int = Field(..., gt=0)
    quantity: int = Field(..., ge=1)
    model_config = ConfigDict(from_attributes=True)


def _unique_roles(requirements: Optional[List[RequirementSchema]]):
    if requirements is None:
        return requirements
    role_ids = [r.role_id for r in requirements]
    if len(role_ids) != len(set(role_ids)):
        raise ValueError("Each role may appear only once in the requirements")
    return requirements


class ShiftTemplateCreate(BaseModel):
    branch_id: int = Field(..., gt=0)
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    start_time: time
    end_time: time
    active_weekdays: List[Weekday] = Field(..., min_length=1, max_length=7)
    requirements: List[RequirementSchema] = Field(default_factory=list)
    status: TemplateStatus = TemplateStatus.ACTIVE

    @field_validator("active_weekdays")
    @classmethod
    def dedupe_weekdays(cls, v):
        return list(dict.fromkeys(v))

    @field_validator("requirements")
    @classmethod
    def validate_requirements(cls, v):
        return _unique_roles(v)


class ShiftTemplateUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    active_weekdays: Optional[List[Weekday]] = Field(None, min_length=1, max_length=7)
    requirements: Optional[List[RequirementSchema]] = None
    status: Optional[TemplateStatus] = None

    @field_validator("requirements")
    @classmethod
    def validate_requirements(cls, v):
        return _unique_roles(v)


class ShiftTemplateResponse(BaseModel):
    id: int
    branch_id: int
    name: str
    description: Optional[str] = None
    start_time: time
    end_time: time
    active_weekdays: List[Weekday]
    requirements: List[RequirementSchema]
    status: TemplateStatus
    created_at: datetime
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


# Scheduled Shift (occurrence) Schemas
class ScheduledShiftCreate(BaseModel):
    template_id: int = Field(..., gt=0)
    branch_id: int = Field(..., gt=0)
    date: date
    created_by_id: Optional[int] = None


class AdHocScheduledShiftCreate(BaseModel):
    branch_id: int = Field(..., gt=0)
    date: date
    name: str = Field(..., min_length=1, max_length=100)
    start_time: time
    end_time: time
    requirements: List[RequirementSchema] = Field(default_factory=list)
    created_by_id: Optional[int] = None

    @field_validator("requirements")
    @classmethod
    def validate_requirements(cls, v):
        return _unique_roles(v)


class ScheduledShiftSummary(BaseModel):
    id: int
    template_id: Optional[int] = None
    branch_id: int
    date: date
    name: str
    start_time: time
    end_time: time
    model_config = ConfigDict(from_attributes=True)


class ScheduledShiftResponse(ScheduledShiftSummary):
    requirements: List[RequirementSchema]
    created_at: datetime


class ScheduledShiftGroupedResponse(BaseModel):
    date: date
    shifts: List[ScheduledShiftResponse]


class ScheduledShiftDeleteResponse(BaseModel):
    scheduled_shift_id: int
    assignments_removed: int


# Staff Shift (assignment) Schemas
class StaffShiftCreate(BaseModel):
    scheduled_shift_id: int = Field(..., gt=0)
    staff_id: int = Field(..., gt=0)
    note: Optional[str] = Field(None, max_length=500)
    strict: bool = False
    created_by_id: Optional[int] = None


class StaffShiftResponse(BaseModel):
    id: int
    scheduled_shift_id: int
    staff_id: int
    note: Optional[str] = None
    status: AssignmentStatus
    change_reason: Optional[str] = None
    published_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    status_changed_at: Optional[datetime] = None
    created_at: datetime
    scheduled_shift: Optional[ScheduledShiftSummary] = None
    model_config = ConfigDict(from_attributes=True)


class StaffShiftUpdate(BaseModel):
    note: Optional[str] = Field(None, max_length=500)


class ReplacementCandidate(BaseModel):
    staff_id: int
    role_id: int


class StatusTransitionRequest(BaseModel):
    status: AssignmentStatus
    reason: Optional[str] = Field(None, max_length=500)


class ChangeRequest(BaseModel):
    staff_id: int = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=500)


class StaffResponseRequest(BaseModel):
    staff_id: int = Field(..., gt=0)
    accept: bool
    reason: Optional[str] = Field(None, max_length=500)

    @model_validator(mode="after")
    def require_reason_on_reject(self):
        if not self.accept and not (self.reason and self.reason.strip()):
            raise ValueError("A reason is required when rejecting a shift")
        return self


# Fulfillment
class RoleFulfillment(BaseModel):
    role_id: int
    required: int
    assigned: int
    shortfall: int


class FulfillmentResult(BaseModel):
    scheduled_shift_id: int
    per_role: List[RoleFulfillment]
    is_fully_satisfied: bool


# Conflicts
class ConflictCheckRequest(BaseModel):
    staff_id: int = Field(..., gt=0)
    date: date
    start_time: time
    end_time: time
    exclude_assignment_id: Optional[int] = None


class ConflictCheckResponse(BaseModel):
    has_conflict: bool
    conflicting_assignment_ids: List[int] = Field(default_factory=list)


# Bulk operations
class BulkAssignRequest(DateRangeMixin):
    branch_id: int = Field(..., gt=0)
    staff_ids: List[int] = Field(..., min_length=1)
    template_id: Optional[int] = Field(None, gt=0)
    scheduled_shift_id: Optional[int] = Field(None, gt=0)
    note: Optional[str] = Field(None, max_length=500)
    created_by_id: Optional[int] = None

    @field_validator("staff_ids")
    @classmethod
    def dedupe_staff(cls, v):
        return list(dict.fromkeys(v))

    @model_validator(mode="after")
    def validate_selector(self):
        if (self.template_id is None) == (self.scheduled_shift_id is None):
            raise ValueError("Provide exactly one of template_id or scheduled_shift_id")
        return self


class BulkAssignUnit(BaseModel):
    """Outcome of one (staff, date) pair"""

    staff_id: int
    date: date
    scheduled_shift_id: Optional[int] = None
    assignment_id: Optional[int] = None
    status: Optional[AssignmentStatus] = None
    error_code: Optional[str] = None
    reason: Optional[str] = None


class BulkAssignReport(BaseModel):
    created: List[BulkAssignUnit] = Field(default_factory=list)
    skipped_duplicate: List[BulkAssignUnit] = Field(default_factory=list)
    failed: List[BulkAssignUnit] = Field(default_factory=list)


class CopyWeekRequest(BaseModel):
    branch_id: int = Field(..., gt=0)
    source_week_start: date
    target_week_starts: List[date] = Field(..., min_length=1)
    created_by_id: Optional[int] = None

    @field_validator("target_week_starts")
    @classmethod
    def dedupe_targets(cls, v):
        return list(dict.fromkeys(v))

    @model_validator(mode="after")
    def validate_targets(self):
        if self.source_week_start in self.target_week_starts:
            raise ValueError("A target week cannot be the source week")
        return self


class CopyWeekFailure(BaseModel):
    source_scheduled_shift_id: int
    target_date: date
    template_id: Optional[int] = None
    error_code: str
    reason: str


class CopyWeekResult(BaseModel):
    total_copied: int = 0
    total_skipped: int = 0
    copied_weeks: List[date] = Field(default_factory=list)
    skipped_duplicates: List[date] = Field(default_factory=list)
    failed: List[CopyWeekFailure] = Field(default_factory=list)
    message: str = ""


class PublishRequest(DateRangeMixin):
    branch_id: int = Field(..., gt=0)
    scheduled_shift_ids: Optional[List[int]] = None
    published_by_id: Optional[int] = None


class PublishFailure(BaseModel):
    assignment_id: int
    staff_id: int
    date: date
    error_code: str
    reason: str


class PublishResult(BaseModel):
    publication_id: int
    published_at: datetime
    total_assignments: int
    published_count: int
    conflicted_count: int
    assignments: List[StaffShiftResponse]
    skipped_locked_ids: List[int] = Field(default_factory=list)
    failed: List[PublishFailure] = Field(default_factory=list)


# Leave events
class LeaveApprovedEvent(DateRangeMixin):
    staff_id: int = Field(..., gt=0)
    balance_sufficient: bool


class LeaveCancelledEvent(DateRangeMixin):
    staff_id: int = Field(..., gt=0)


class LeaveReconciliationResult(BaseModel):
    staff_id: int
    start_date: date
    end_date: date
    new_status: AssignmentStatus
    affected_assignment_ids: List[int]


# Schedule locks
class ScheduleLockCreate(DateRangeMixin):
    branch_id: int = Field(..., gt=0)
    locked_by_id: Optional[int] = None
    lock_reason: Optional[str] = Field(None, max_length=500)


class ScheduleUnlockRequest(BaseModel):
    unlocked_by_id: Optional[int] = None
    unlock_reason: str = Field(..., min_length=1, max_length=500)


class ScheduleLockResponse(BaseModel):
    id: int
    branch_id: int
    start_date: date
    end_date: date
    lock_status: ScheduleLockStatus
    lock_reason: Optional[str] = None
    locked_by_id: Optional[int] = None
    locked_at: Optional[datetime] = None
    unlocked_by_id: Optional[int] = None
    unlocked_at: Optional[datetime] = None
    unlock_reason: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


# Read views
class AssignmentsGroupedResponse(BaseModel):
    """role id -> staff id -> date -> assignments"""

    data: Dict[int, Dict[int, Dict[date, List[StaffShiftResponse]]]]


class UnderstaffedShift(BaseModel):
    scheduled_shift: ScheduledShiftSummary
    per_role: List[RoleFulfillment]
    total_required: int
    total_assigned: int
    total_shortfall: int


class ScheduleOverview(BaseModel):
    branch_id: int
    start_date: date
    end_date: date
    total_assignments: int
    status_breakdown: Dict[AssignmentStatus, int]
    total_scheduled_shifts: int
    understaffed_shifts: List[UnderstaffedShift]
