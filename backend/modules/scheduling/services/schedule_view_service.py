from collections import Counter
from datetime import date
from typing import Dict, Iterable, List, Optional
import logging

from sqlalchemy.orm import Session

from ..config.scheduling_config import SchedulingSettings, get_scheduling_settings
from ..enums.scheduling_enums import AssignmentStatus
from ..exceptions.scheduling_exceptions import BranchNotFound
from ..models.scheduling_models import StaffShift
from ..schemas.scheduling_schemas import (
    ScheduledShiftSummary,
    ScheduleOverview,
    UnderstaffedShift,
)
from .assignment_service import AssignmentService
from .fulfillment_service import FulfillmentService
from .occurrence_service import OccurrenceService
from .staff_directory import StaffDirectory, SqlStaffDirectory

logger = logging.getLogger(__name__)

# Bucket for staff the directory no longer knows
UNKNOWN_ROLE_ID = 0

GroupedAssignments = Dict[int, Dict[int, Dict[date, List[StaffShift]]]]


class ScheduleViewService:
    """Read-only projections for schedule displays, rebuilt on every call"""

    def __init__(
        self,
        db: Session,
        directory: Optional[StaffDirectory] = None,
        settings: Optional[SchedulingSettings] = None,
    ):
        self.db = db
        self.directory = directory or SqlStaffDirectory(db)
        self.settings = settings or get_scheduling_settings()
        self.assignment_service = AssignmentService(db, self.directory, self.settings)
        self.occurrence_service = OccurrenceService(
            db, self.directory, self.settings, self.assignment_service.lock_service
        )
        self.fulfillment_service = FulfillmentService(db, self.directory)

    def assignments_grouped_by_role_and_staff(
        self,
        branch_id: int,
        start_date: date,
        end_date: date,
        statuses: Optional[Iterable[AssignmentStatus]] = None,
    ) -> GroupedAssignments:
        """role id -> staff id -> date -> assignments, ordered by shift start"""
        if not self.directory.branch_exists(branch_id):
            raise BranchNotFound(branch_id)

        assignments = self.assignment_service.list_assignments(
            branch_id, start_date, end_date, statuses=statuses
        )
        roles = self.directory.get_staff_primary_roles(a.staff_id for a in assignments)

        grouped: GroupedAssignments = {}
        for assignment in assignments:
            role_id = roles.get(assignment.staff_id, UNKNOWN_ROLE_ID)
            (
                grouped.setdefault(role_id, {})
                .setdefault(assignment.staff_id, {})
                .setdefault(assignment.scheduled_shift.date, [])
                .append(assignment)
            )
        return grouped

    def schedule_overview(self, branch_id: int, start_date: date, end_date: date) -> ScheduleOverview:
        occurrences = self.occurrence_service.list_occurrences(branch_id, start_date, end_date)
        assignments = self.assignment_service.list_assignments(branch_id, start_date, end_date)

        breakdown = Counter(a.status for a in assignments)
        status_breakdown = {status: breakdown.get(status, 0) for status in AssignmentStatus}

        understaffed: List[UnderstaffedShift] = []
        for occurrence in occurrences:
            result = self.fulfillment_service.evaluate_occurrence(occurrence)
            if result.is_fully_satisfied:
                continue
            understaffed.append(
                UnderstaffedShift(
                    scheduled_shift=ScheduledShiftSummary.model_validate(occurrence),
                    per_role=result.per_role,
                    total_required=sum(r.required for r in result.per_role),
                    total_assigned=sum(r.assigned for r in result.per_role),
                    total_shortfall=sum(r.shortfall for r in result.per_role),
                )
            )

        return ScheduleOverview(
            branch_id=branch_id,
            start_date=start_date,
            end_date=end_date,
            total_assignments=len(assignments),
            status_breakdown=status_breakdown,
            total_scheduled_shifts=len(occurrences),
            understaffed_shifts=understaffed,
        )
