from datetime import date, timedelta
from typing import Dict, List, Optional
import logging

from sqlalchemy import and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, contains_eager, selectinload

from core.query_logger import log_query_performance

from ..config.scheduling_config import SchedulingSettings, get_scheduling_settings
from ..enums.scheduling_enums import PUBLISHABLE_STATUSES, AssignmentStatus
from ..exceptions.scheduling_exceptions import (
    BranchNotFound,
    DuplicateAssignment,
    InvalidTransition,
    SchedulingException,
    ValidationFailed,
)
from ..models.scheduling_models import (
    ScheduledShift,
    ScheduledShiftRequirement,
    SchedulePublication,
    StaffShift,
)
from ..schemas.scheduling_schemas import (
    BulkAssignReport,
    BulkAssignRequest,
    BulkAssignUnit,
    CopyWeekFailure,
    CopyWeekRequest,
    CopyWeekResult,
    PublishFailure,
    PublishRequest,
    PublishResult,
    StaffShiftResponse,
)
from ..utils.time_utils import (
    check_date_range,
    expand_date_range,
    utcnow,
    week_bounds,
    week_start,
)
from .assignment_service import AssignmentService
from .conflict_service import ConflictService
from .occurrence_service import OccurrenceService, ensure_schedulable
from .schedule_lock_service import ScheduleLockService
from .shift_template_service import ShiftTemplateService
from .staff_directory import StaffDirectory, SqlStaffDirectory

logger = logging.getLogger(__name__)


class BulkOperationsService:
    """
    Bulk-assign, copy-week and publish.

    None of these are atomic across the batch. Each unit of work (one
    staff/date pair, one copied shift, one published assignment) is committed
    on its own, so a batch stopped half way leaves every finished unit valid.
    Per-unit failures are collected into the returned report; only problems
    that stop the batch from starting at all are raised.
    """

    def __init__(
        self,
        db: Session,
        directory: Optional[StaffDirectory] = None,
        settings: Optional[SchedulingSettings] = None,
    ):
        self.db = db
        self.directory = directory or SqlStaffDirectory(db)
        self.settings = settings or get_scheduling_settings()

        self.lock_service = ScheduleLockService(db, self.directory, self.settings)
        self.conflict_service = ConflictService(db)
        self.template_service = ShiftTemplateService(db, self.directory)
        self.occurrence_service = OccurrenceService(
            db, self.directory, self.settings, self.lock_service
        )
        self.assignment_service = AssignmentService(
            db, self.directory, self.settings, self.lock_service, self.conflict_service
        )

    # Bulk assign

    def bulk_assign(self, request: BulkAssignRequest) -> BulkAssignReport:
        if len(request.staff_ids) > self.settings.max_bulk_staff:
            raise ValidationFailed(
                f"Bulk assign accepts at most {self.settings.max_bulk_staff} staff members",
                staff_count=len(request.staff_ids),
            )
        check_date_range(request.start_date, request.end_date, self.settings.max_date_range_days)
        if not self.directory.branch_exists(request.branch_id):
            raise BranchNotFound(request.branch_id)

        if request.template_id is not None:
            template = self.template_service.get_template(request.template_id)
            if template.branch_id != request.branch_id:
                raise ValidationFailed(
                    f"Template {template.id} belongs to branch {template.branch_id}",
                    template_id=template.id,
                    branch_id=request.branch_id,
                )
            dates = expand_date_range(request.start_date, request.end_date)
        else:
            occurrence = self.occurrence_service.get_occurrence(request.scheduled_shift_id)
            if occurrence.branch_id != request.branch_id:
                raise ValidationFailed(
                    f"Scheduled shift {occurrence.id} belongs to branch {occurrence.branch_id}",
                    scheduled_shift_id=occurrence.id,
                    branch_id=request.branch_id,
                )
            if not request.start_date <= occurrence.date <= request.end_date:
                raise ValidationFailed(
                    f"Scheduled shift {occurrence.id} on {occurrence.date} is outside the requested range",
                    scheduled_shift_id=occurrence.id,
                )
            dates = [occurrence.date]

        report = BulkAssignReport()
        with log_query_performance("bulk_assign"):
            for shift_date in dates:
                try:
                    occurrence_id = self._resolve_occurrence(request, shift_date)
                except SchedulingException as exc:
                    logger.warning(f"Bulk assign: no scheduled shift on {shift_date}: {exc.message}")
                    for staff_id in request.staff_ids:
                        report.failed.append(
                            BulkAssignUnit(
                                staff_id=staff_id,
                                date=shift_date,
                                error_code=exc.error_code,
                                reason=exc.message,
                            )
                        )
                    continue

                for staff_id in request.staff_ids:
                    self._assign_unit(report, request, occurrence_id, staff_id, shift_date)

        logger.info(
            f"Bulk assign for branch {request.branch_id}: {len(report.created)} created, "
            f"{len(report.skipped_duplicate)} duplicate(s) skipped, {len(report.failed)} failed"
        )
        return report

    def _resolve_occurrence(self, request: BulkAssignRequest, shift_date: date) -> int:
        if request.scheduled_shift_id is not None:
            return request.scheduled_shift_id
        occurrence, _ = self.occurrence_service.get_or_create_occurrence(
            request.template_id, request.branch_id, shift_date, request.created_by_id
        )
        return occurrence.id

    def _assign_unit(
        self,
        report: BulkAssignReport,
        request: BulkAssignRequest,
        occurrence_id: int,
        staff_id: int,
        shift_date: date,
    ) -> None:
        try:
            assignment = self.assignment_service.assign(
                occurrence_id,
                staff_id,
                note=request.note,
                created_by_id=request.created_by_id,
            )
        except DuplicateAssignment as exc:
            existing = (
                self.db.query(StaffShift.id)
                .filter(
                    StaffShift.scheduled_shift_id == occurrence_id,
                    StaffShift.staff_id == staff_id,
                )
                .first()
            )
            report.skipped_duplicate.append(
                BulkAssignUnit(
                    staff_id=staff_id,
                    date=shift_date,
                    scheduled_shift_id=occurrence_id,
                    assignment_id=existing.id if existing else None,
                    error_code=exc.error_code,
                    reason=exc.message,
                )
            )
            return
        except SchedulingException as exc:
            logger.warning(
                f"Bulk assign failed for staff {staff_id} on {shift_date} "
                f"(scheduled shift {occurrence_id}): {exc.message}"
            )
            report.failed.append(
                BulkAssignUnit(
                    staff_id=staff_id,
                    date=shift_date,
                    scheduled_shift_id=occurrence_id,
                    error_code=exc.error_code,
                    reason=exc.message,
                )
            )
            return

        report.created.append(
            BulkAssignUnit(
                staff_id=staff_id,
                date=shift_date,
                scheduled_shift_id=occurrence_id,
                assignment_id=assignment.id,
                status=assignment.status,
            )
        )

    # Copy week

    def copy_week(self, request: CopyWeekRequest) -> CopyWeekResult:
        """
        Copy a week's scheduled shifts and their assignments onto target weeks.

        Dates are aligned to the configured week start so weekdays are kept.
        A shift that already exists on the target date is skipped, never
        merged. Copied assignments start over as DRAFT and are flagged
        CONFLICTED, together with the work they overlap, like any new assignment.
        """
        if len(request.target_week_starts) > self.settings.max_copy_target_weeks:
            raise ValidationFailed(
                f"Copy week accepts at most {self.settings.max_copy_target_weeks} target weeks",
                target_count=len(request.target_week_starts),
            )
        if not self.directory.branch_exists(request.branch_id):
            raise BranchNotFound(request.branch_id)

        first_weekday = self.settings.week_start_weekday
        source_start, source_end = week_bounds(request.source_week_start, first_weekday)
        targets: List[date] = []
        for target in request.target_week_starts:
            aligned = week_start(target, first_weekday)
            if aligned == source_start:
                raise ValidationFailed(
                    f"Target week {target} is the source week", target_week_start=target
                )
            if aligned not in targets:
                targets.append(aligned)

        source_shifts = (
            self.db.query(ScheduledShift)
            .options(
                selectinload(ScheduledShift.requirements),
                selectinload(ScheduledShift.assignments),
                selectinload(ScheduledShift.template),
            )
            .filter(
                and_(
                    ScheduledShift.branch_id == request.branch_id,
                    ScheduledShift.date >= source_start,
                    ScheduledShift.date <= source_end,
                )
            )
            .order_by(ScheduledShift.date, ScheduledShift.start_time, ScheduledShift.id)
            .all()
        )
        # Plain copies, so per-unit commits and rollbacks cannot expire them
        sources = [_snapshot(shift) for shift in source_shifts]

        result = CopyWeekResult()
        with log_query_performance("copy_week"):
            for target in targets:
                offset = target - source_start
                locked = self.lock_service.locked_dates(
                    request.branch_id, target, target + timedelta(days=6)
                )
                copied_any = False
                for source in sources:
                    target_date = source["date"] + offset
                    outcome = self._copy_unit(request, source, target_date, locked, result)
                    copied_any = copied_any or outcome
                if copied_any:
                    result.copied_weeks.append(target)

        result.message = (
            f"Copied {result.total_copied} shift(s) into {len(result.copied_weeks)} week(s), "
            f"skipped {result.total_skipped} existing shift(s), {len(result.failed)} failed"
        )
        logger.info(f"Copy week for branch {request.branch_id} from {source_start}: {result.message}")
        return result

    def _copy_unit(
        self,
        request: CopyWeekRequest,
        source: Dict,
        target_date: date,
        locked: Dict[date, int],
        result: CopyWeekResult,
    ) -> bool:
        """Copy one scheduled shift; True when a new shift was written"""

        def fail(error_code: str, reason: str):
            logger.warning(
                f"Copy week: scheduled shift {source['id']} not copied to {target_date}: {reason}"
            )
            result.failed.append(
                CopyWeekFailure(
                    source_scheduled_shift_id=source["id"],
                    target_date=target_date,
                    template_id=source["template_id"],
                    error_code=error_code,
                    reason=reason,
                )
            )

        if target_date in locked:
            fail("SCHEDULE_LOCKED", f"schedule is locked on {target_date} (lock {locked[target_date]})")
            return False

        if self._target_exists(request.branch_id, source, target_date):
            self._record_skip(result, target_date)
            return False

        template = source["template"]
        if template is not None:
            try:
                ensure_schedulable(template, request.branch_id, target_date)
            except SchedulingException as exc:
                fail(exc.error_code, exc.message)
                return False

        now = utcnow()
        copy = ScheduledShift(
            template_id=source["template_id"],
            branch_id=request.branch_id,
            date=target_date,
            name=source["name"],
            start_time=source["start_time"],
            end_time=source["end_time"],
            created_by_id=request.created_by_id,
            requirements=[
                ScheduledShiftRequirement(role_id=role_id, quantity=quantity)
                for role_id, quantity in source["requirements"]
            ],
            assignments=[
                StaffShift(
                    staff_id=staff_id,
                    note=note,
                    status=AssignmentStatus.DRAFT,
                    status_changed_at=now,
                    created_by_id=request.created_by_id,
                )
                for staff_id, note in source["assignments"]
            ],
        )
        self.db.add(copy)
        try:
            self.db.commit()
        except IntegrityError:
            # A concurrent writer created the same shift first
            self.db.rollback()
            self._record_skip(result, target_date)
            return False

        result.total_copied += 1
        for assignment in list(copy.assignments):
            self.assignment_service.flag_conflicts(assignment)
        return True

    def _target_exists(self, branch_id: int, source: Dict, target_date: date) -> bool:
        if source["template_id"] is not None:
            existing = self.occurrence_service.find_occurrence(
                source["template_id"], branch_id, target_date
            )
        else:
            existing = self.occurrence_service.find_matching_ad_hoc(
                branch_id, target_date, source["name"], source["start_time"], source["end_time"]
            )
        return existing is not None

    @staticmethod
    def _record_skip(result: CopyWeekResult, target_date: date) -> None:
        result.total_skipped += 1
        if target_date not in result.skipped_duplicates:
            result.skipped_duplicates.append(target_date)

    # Publish

    def publish(self, request: PublishRequest) -> PublishResult:
        """
        Publish DRAFT and PENDING assignments in scope.

        Every selected assignment is re-checked for overlaps and ends up either
        PUBLISHED or CONFLICTED. One that was removed or changed status after
        selection is reported under ``failed`` instead, so the batch always
        returns its report. Assignments on locked dates are left alone and
        reported separately.
        """
        check_date_range(request.start_date, request.end_date, self.settings.max_date_range_days)
        if not self.directory.branch_exists(request.branch_id):
            raise BranchNotFound(request.branch_id)

        query = (
            self.db.query(StaffShift)
            .join(StaffShift.scheduled_shift)
            .options(contains_eager(StaffShift.scheduled_shift))
            .filter(
                and_(
                    ScheduledShift.branch_id == request.branch_id,
                    ScheduledShift.date >= request.start_date,
                    ScheduledShift.date <= request.end_date,
                    StaffShift.status.in_(list(PUBLISHABLE_STATUSES)),
                )
            )
        )
        if request.scheduled_shift_ids:
            query = query.filter(ScheduledShift.id.in_(request.scheduled_shift_ids))
        candidates = query.order_by(ScheduledShift.date, ScheduledShift.start_time, StaffShift.id).all()

        locked = self.lock_service.locked_dates(request.branch_id, request.start_date, request.end_date)
        skipped_locked_ids = [a.id for a in candidates if a.scheduled_shift.date in locked]
        selected = [
            (a.id, a.staff_id, a.scheduled_shift.date)
            for a in candidates
            if a.scheduled_shift.date not in locked
        ]
        selected_ids = [assignment_id for assignment_id, _, _ in selected]

        published_count = 0
        conflicted_count = 0
        failed: List[PublishFailure] = []
        with log_query_performance("publish_schedule"):
            for assignment_id, staff_id, shift_date in selected:
                try:
                    outcome = self._publish_unit(assignment_id)
                except SchedulingException as exc:
                    self.db.rollback()
                    logger.warning(
                        f"Publish: assignment {assignment_id} of staff {staff_id} "
                        f"on {shift_date} not published: {exc.message}"
                    )
                    failed.append(
                        PublishFailure(
                            assignment_id=assignment_id,
                            staff_id=staff_id,
                            date=shift_date,
                            error_code=exc.error_code,
                            reason=exc.message,
                        )
                    )
                    continue

                if outcome == AssignmentStatus.PUBLISHED:
                    published_count += 1
                else:
                    conflicted_count += 1

        published_at = utcnow()
        publication = SchedulePublication(
            branch_id=request.branch_id,
            start_date=request.start_date,
            end_date=request.end_date,
            published_by_id=request.published_by_id,
            published_at=published_at,
            total_assignments=len(selected_ids),
            published_count=published_count,
            conflicted_count=conflicted_count,
        )
        self.db.add(publication)
        self.db.commit()
        self.db.refresh(publication)

        assignments = (
            self.db.query(StaffShift)
            .options(selectinload(StaffShift.scheduled_shift))
            .filter(StaffShift.id.in_(selected_ids))
            .all()
            if selected_ids
            else []
        )
        order = {assignment_id: i for i, assignment_id in enumerate(selected_ids)}
        assignments.sort(key=lambda a: order[a.id])

        logger.info(
            f"Published schedule for branch {request.branch_id} {request.start_date} - "
            f"{request.end_date}: {published_count} published, {conflicted_count} conflicted, "
            f"{len(failed)} failed, {len(skipped_locked_ids)} on locked dates"
        )
        return PublishResult(
            publication_id=publication.id,
            published_at=published_at,
            total_assignments=len(selected_ids),
            published_count=published_count,
            conflicted_count=conflicted_count,
            assignments=[StaffShiftResponse.model_validate(a) for a in assignments],
            skipped_locked_ids=skipped_locked_ids,
            failed=failed,
        )

    def _publish_unit(self, assignment_id: int) -> AssignmentStatus:
        """Publish or flag one assignment, re-read so changes made since selection count"""
        assignment = self.assignment_service.get_assignment(assignment_id)
        if assignment.status not in PUBLISHABLE_STATUSES:
            raise InvalidTransition(
                f"Assignment {assignment_id} became {assignment.status.value} before it was published",
                context={"assignment_id": assignment_id, "status": assignment.status},
            )

        conflicts = self.conflict_service.conflicts_for_assignment(assignment)
        if conflicts:
            outcome = AssignmentStatus.CONFLICTED
            logger.warning(
                f"Publish: assignment {assignment_id} of staff {assignment.staff_id} "
                f"conflicts with {[c.id for c in conflicts]}"
            )
        else:
            outcome = AssignmentStatus.PUBLISHED
        self.assignment_service.apply_transition(assignment, outcome)
        self.db.commit()
        return outcome


def _snapshot(shift: ScheduledShift) -> Dict:
    return {
        "id": shift.id,
        "template_id": shift.template_id,
        "template": shift.template,
        "date": shift.date,
        "name": shift.name,
        "start_time": shift.start_time,
        "end_time": shift.end_time,
        "requirements": [(r.role_id, r.quantity) for r in shift.requirements],
        "assignments": [(a.staff_id, a.note) for a in shift.assignments],
    }
