from datetime import date
from typing import Iterable, List, Optional
import logging

from sqlalchemy import and_
from sqlalchemy.orm import Session, contains_eager

from ..enums.scheduling_enums import COUNTABLE_STATUSES, LEAVE_STATUSES, AssignmentStatus
from ..models.scheduling_models import ScheduledShift, StaffShift
from ..schemas.scheduling_schemas import (
    LeaveApprovedEvent,
    LeaveCancelledEvent,
    LeaveReconciliationResult,
)
from .assignment_service import AssignmentService

logger = logging.getLogger(__name__)


class LeaveReconciliationService:
    """
    Applies leave events from the leave subsystem to the schedule.

    Whether the staff member's balance covers the leave is decided upstream
    and arrives as ``balance_sufficient``. Schedule locks do not apply here.
    """

    def __init__(self, db: Session, assignment_service: Optional[AssignmentService] = None):
        self.db = db
        self.assignment_service = assignment_service or AssignmentService(db)

    def handle_leave_approved(self, event: LeaveApprovedEvent) -> LeaveReconciliationResult:
        new_status = (
            AssignmentStatus.APPROVED_LEAVE_VALID
            if event.balance_sufficient
            else AssignmentStatus.APPROVED_LEAVE_EXCEEDED
        )
        affected = self._assignments_in_range(
            event.staff_id, event.start_date, event.end_date, COUNTABLE_STATUSES
        )
        return self._apply(event.staff_id, event.start_date, event.end_date, affected, new_status)

    def handle_leave_cancelled(self, event: LeaveCancelledEvent) -> LeaveReconciliationResult:
        """
        Return leave-marked assignments to DRAFT; they need publishing again.

        Restored assignments are checked for overlaps like new ones.
        """
        affected = self._assignments_in_range(
            event.staff_id, event.start_date, event.end_date, LEAVE_STATUSES
        )
        result = self._apply(
            event.staff_id, event.start_date, event.end_date, affected, AssignmentStatus.DRAFT
        )
        for assignment in affected:
            self.assignment_service.flag_conflicts(assignment)
        return result

    def _apply(
        self,
        staff_id: int,
        start_date: date,
        end_date: date,
        assignments: List[StaffShift],
        new_status: AssignmentStatus,
    ) -> LeaveReconciliationResult:
        for assignment in assignments:
            self.assignment_service.apply_transition(assignment, new_status)
        affected_ids = [a.id for a in assignments]
        self.db.commit()

        logger.info(
            f"Leave for staff {staff_id} {start_date} - {end_date}: "
            f"{len(affected_ids)} assignment(s) set to {new_status.value}"
        )
        return LeaveReconciliationResult(
            staff_id=staff_id,
            start_date=start_date,
            end_date=end_date,
            new_status=new_status,
            affected_assignment_ids=affected_ids,
        )

    def _assignments_in_range(
        self,
        staff_id: int,
        start_date: date,
        end_date: date,
        statuses: Iterable[AssignmentStatus],
    ) -> List[StaffShift]:
        return (
            self.db.query(StaffShift)
            .join(StaffShift.scheduled_shift)
            .options(contains_eager(StaffShift.scheduled_shift))
            .filter(
                and_(
                    StaffShift.staff_id == staff_id,
                    ScheduledShift.date >= start_date,
                    ScheduledShift.date <= end_date,
                    StaffShift.status.in_(list(statuses)),
                )
            )
            .order_by(ScheduledShift.date, StaffShift.id)
            .all()
        )
