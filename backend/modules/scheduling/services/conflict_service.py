from datetime import date, time
from typing import List, Optional
import logging

from sqlalchemy import and_
from sqlalchemy.orm import Session, contains_eager

from ..enums.scheduling_enums import CONFLICT_PEER_STATUSES
from ..models.scheduling_models import ScheduledShift, StaffShift
from ..schemas.scheduling_schemas import ConflictCheckResponse
from ..utils.time_utils import TimeWindow, windows_overlap

logger = logging.getLogger(__name__)


class ConflictService:
    """
    Read-only double-booking checks for one staff member on one date.

    Nothing here writes to the session, so every method is safe to call
    speculatively, e.g. to preview an assignment before committing it.
    """

    def __init__(self, db: Session):
        self.db = db

    def has_conflict(
        self,
        staff_id: int,
        shift_date: date,
        candidate_start: time,
        candidate_end: time,
        exclude_assignment_id: Optional[int] = None,
    ) -> bool:
        """True as soon as one peer assignment overlaps the candidate window"""
        candidate = TimeWindow.from_times(candidate_start, candidate_end)
        for assignment in self._peer_assignments(staff_id, shift_date, exclude_assignment_id):
            if windows_overlap(candidate, _window_of(assignment)):
                return True
        return False

    def find_conflicts(
        self,
        staff_id: int,
        shift_date: date,
        candidate_start: time,
        candidate_end: time,
        exclude_assignment_id: Optional[int] = None,
    ) -> List[StaffShift]:
        """Every peer assignment overlapping the candidate window"""
        candidate = TimeWindow.from_times(candidate_start, candidate_end)
        return [
            assignment
            for assignment in self._peer_assignments(staff_id, shift_date, exclude_assignment_id)
            if windows_overlap(candidate, _window_of(assignment))
        ]

    def conflicts_for_assignment(self, assignment: StaffShift) -> List[StaffShift]:
        occurrence = assignment.scheduled_shift
        return self.find_conflicts(
            assignment.staff_id,
            occurrence.date,
            occurrence.start_time,
            occurrence.end_time,
            exclude_assignment_id=assignment.id,
        )

    def preview(self, occurrence: ScheduledShift, staff_id: int) -> ConflictCheckResponse:
        """What assigning ``staff_id`` to ``occurrence`` would collide with"""
        existing = (
            self.db.query(StaffShift.id)
            .filter(
                StaffShift.scheduled_shift_id == occurrence.id,
                StaffShift.staff_id == staff_id,
            )
            .first()
        )
        conflicts = self.find_conflicts(
            staff_id,
            occurrence.date,
            occurrence.start_time,
            occurrence.end_time,
            exclude_assignment_id=existing.id if existing else None,
        )
        return ConflictCheckResponse(
            has_conflict=bool(conflicts),
            conflicting_assignment_ids=[a.id for a in conflicts],
        )

    def _peer_assignments(
        self, staff_id: int, shift_date: date, exclude_assignment_id: Optional[int]
    ) -> List[StaffShift]:
        query = (
            self.db.query(StaffShift)
            .join(StaffShift.scheduled_shift)
            .options(contains_eager(StaffShift.scheduled_shift))
            .filter(
                and_(
                    StaffShift.staff_id == staff_id,
                    ScheduledShift.date == shift_date,
                    StaffShift.status.in_(list(CONFLICT_PEER_STATUSES)),
                )
            )
        )
        if exclude_assignment_id is not None:
            query = query.filter(StaffShift.id != exclude_assignment_id)
        return query.order_by(StaffShift.id).all()


def _window_of(assignment: StaffShift) -> TimeWindow:
    occurrence = assignment.scheduled_shift
    return TimeWindow.from_times(occurrence.start_time, occurrence.end_time)
