from datetime import date
from typing import Dict, List, Optional, Tuple
import logging

from sqlalchemy import and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from ..config.scheduling_config import SchedulingSettings, get_scheduling_settings
from ..enums.scheduling_enums import TemplateStatus
from ..exceptions.scheduling_exceptions import (
    BranchNotFound,
    DuplicateOccurrence,
    OccurrenceNotFound,
    TemplateNotFound,
    TemplateNotSchedulable,
)
from ..models.scheduling_models import (
    ScheduledShift,
    ScheduledShiftRequirement,
    ShiftTemplate,
    StaffShift,
)
from ..schemas.scheduling_schemas import AdHocScheduledShiftCreate
from ..utils.time_utils import check_date_range, weekday_tag
from .assignment_service import AssignmentService
from .schedule_lock_service import ScheduleLockService
from .shift_template_service import is_active_on
from .staff_directory import StaffDirectory, SqlStaffDirectory

logger = logging.getLogger(__name__)


class OccurrenceService:
    """Materializes shift templates into scheduled shifts on concrete branch dates"""

    def __init__(
        self,
        db: Session,
        directory: Optional[StaffDirectory] = None,
        settings: Optional[SchedulingSettings] = None,
        lock_service: Optional[ScheduleLockService] = None,
    ):
        self.db = db
        self.directory = directory or SqlStaffDirectory(db)
        self.settings = settings or get_scheduling_settings()
        self.lock_service = lock_service or ScheduleLockService(db, self.directory, self.settings)

    def create_occurrence(
        self,
        template_id: int,
        branch_id: int,
        shift_date: date,
        created_by_id: Optional[int] = None,
    ) -> ScheduledShift:
        """
        Schedule a template on a branch date.

        The template's requirements are copied onto the occurrence so later
        template edits do not change staffing targets that are already set.
        Uniqueness of (template, branch, date) is enforced by the database
        constraint; a losing concurrent insert surfaces as DuplicateOccurrence.
        """
        if not self.directory.branch_exists(branch_id):
            raise BranchNotFound(branch_id)

        template = (
            self.db.query(ShiftTemplate)
            .options(selectinload(ShiftTemplate.requirements))
            .filter(ShiftTemplate.id == template_id)
            .first()
        )
        if not template:
            raise TemplateNotFound(template_id)
        ensure_schedulable(template, branch_id, shift_date)
        self.lock_service.ensure_unlocked(branch_id, shift_date)

        occurrence = ScheduledShift(
            template_id=template.id,
            branch_id=branch_id,
            date=shift_date,
            name=template.name,
            start_time=template.start_time,
            end_time=template.end_time,
            created_by_id=created_by_id,
            requirements=[
                ScheduledShiftRequirement(role_id=r.role_id, quantity=r.quantity)
                for r in template.requirements
            ],
        )
        return self._insert(occurrence)

    def create_ad_hoc_occurrence(self, data: AdHocScheduledShiftCreate) -> ScheduledShift:
        """Create a one-off shift that is not backed by a template"""
        if not self.directory.branch_exists(data.branch_id):
            raise BranchNotFound(data.branch_id)
        self.lock_service.ensure_unlocked(data.branch_id, data.date)

        occurrence = ScheduledShift(
            template_id=None,
            branch_id=data.branch_id,
            date=data.date,
            name=data.name,
            start_time=data.start_time,
            end_time=data.end_time,
            created_by_id=data.created_by_id,
            requirements=[
                ScheduledShiftRequirement(role_id=r.role_id, quantity=r.quantity)
                for r in data.requirements
            ],
        )
        return self._insert(occurrence)

    def get_or_create_occurrence(
        self,
        template_id: int,
        branch_id: int,
        shift_date: date,
        created_by_id: Optional[int] = None,
    ) -> Tuple[ScheduledShift, bool]:
        """Return the occurrence for (template, branch, date), creating it if needed"""
        existing = self.find_occurrence(template_id, branch_id, shift_date)
        if existing:
            return existing, False
        try:
            return self.create_occurrence(template_id, branch_id, shift_date, created_by_id), True
        except DuplicateOccurrence:
            # Another writer created it between the lookup and the insert
            existing = self.find_occurrence(template_id, branch_id, shift_date)
            if existing is None:
                raise
            return existing, False

    def get_occurrence(self, occurrence_id: int) -> ScheduledShift:
        occurrence = (
            self.db.query(ScheduledShift)
            .options(selectinload(ScheduledShift.requirements))
            .filter(ScheduledShift.id == occurrence_id)
            .first()
        )
        if not occurrence:
            raise OccurrenceNotFound(occurrence_id)
        return occurrence

    def find_occurrence(
        self, template_id: int, branch_id: int, shift_date: date
    ) -> Optional[ScheduledShift]:
        return (
            self.db.query(ScheduledShift)
            .filter(
                and_(
                    ScheduledShift.template_id == template_id,
                    ScheduledShift.branch_id == branch_id,
                    ScheduledShift.date == shift_date,
                )
            )
            .first()
        )

    def find_matching_ad_hoc(
        self, branch_id: int, shift_date: date, name: str, start_time, end_time
    ) -> Optional[ScheduledShift]:
        """An ad hoc shift on the same branch date with the same name and times"""
        return (
            self.db.query(ScheduledShift)
            .filter(
                and_(
                    ScheduledShift.template_id.is_(None),
                    ScheduledShift.branch_id == branch_id,
                    ScheduledShift.date == shift_date,
                    ScheduledShift.name == name,
                    ScheduledShift.start_time == start_time,
                    ScheduledShift.end_time == end_time,
                )
            )
            .first()
        )

    def delete_occurrence(self, occurrence_id: int) -> int:
        """
        Delete an occurrence and every assignment attached to it.

        Returns the number of assignments removed.
        """
        occurrence = self.get_occurrence(occurrence_id)
        self.lock_service.ensure_unlocked(occurrence.branch_id, occurrence.date)

        shift_date = occurrence.date
        assignments = (
            self.db.query(StaffShift)
            .filter(StaffShift.scheduled_shift_id == occurrence_id)
            .all()
        )
        removed = len(assignments)
        ledger = AssignmentService(
            self.db, self.directory, self.settings, self.lock_service
        )
        former_peers = [peer for a in assignments for peer in ledger.conflicted_peers(a)]
        self.db.delete(occurrence)
        self.db.commit()

        logger.info(
            f"Deleted scheduled shift {occurrence_id} ({shift_date}) "
            f"and {removed} assignment(s)"
        )
        ledger.release_conflicts(former_peers)
        return removed

    def list_occurrences(self, branch_id: int, start_date: date, end_date: date) -> List[ScheduledShift]:
        check_date_range(start_date, end_date, self.settings.max_date_range_days)
        if not self.directory.branch_exists(branch_id):
            raise BranchNotFound(branch_id)

        return (
            self.db.query(ScheduledShift)
            .options(selectinload(ScheduledShift.requirements))
            .filter(
                and_(
                    ScheduledShift.branch_id == branch_id,
                    ScheduledShift.date >= start_date,
                    ScheduledShift.date <= end_date,
                )
            )
            .order_by(ScheduledShift.date, ScheduledShift.start_time, ScheduledShift.id)
            .all()
        )

    def list_occurrences_grouped_by_date(
        self, branch_id: int, start_date: date, end_date: date
    ) -> List[Dict]:
        grouped: Dict[date, List[ScheduledShift]] = {}
        for occurrence in self.list_occurrences(branch_id, start_date, end_date):
            grouped.setdefault(occurrence.date, []).append(occurrence)
        return [{"date": d, "shifts": shifts} for d, shifts in grouped.items()]

    def _insert(self, occurrence: ScheduledShift) -> ScheduledShift:
        key = (occurrence.template_id, occurrence.branch_id, occurrence.date)
        self.db.add(occurrence)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise DuplicateOccurrence(*key)

        self.db.refresh(occurrence)
        logger.info(
            f"Scheduled shift {occurrence.id} '{occurrence.name}' for branch "
            f"{occurrence.branch_id} on {occurrence.date}"
        )
        return occurrence


def ensure_schedulable(template: ShiftTemplate, branch_id: int, shift_date: date) -> None:
    """Raise TemplateNotSchedulable unless the template can run on this branch date"""
    if template.branch_id != branch_id:
        raise TemplateNotSchedulable(
            template.id, shift_date, f"template belongs to branch {template.branch_id}"
        )
    if template.status != TemplateStatus.ACTIVE:
        raise TemplateNotSchedulable(template.id, shift_date, "template is inactive")
    weekday = weekday_tag(shift_date)
    if not is_active_on(template, weekday):
        raise TemplateNotSchedulable(
            template.id, shift_date, f"template does not run on {weekday.value}"
        )
