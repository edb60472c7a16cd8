from datetime import date
from typing import Iterable, List, Optional
import logging

from sqlalchemy import and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, contains_eager, joinedload

from ..config.scheduling_config import SchedulingSettings, get_scheduling_settings
from ..enums.scheduling_enums import CONFLICT_PEER_STATUSES, AssignmentStatus
from ..exceptions.scheduling_exceptions import (
    AssignmentNotFound,
    ConflictDetected,
    DuplicateAssignment,
    InvalidTransition,
    NotAssignee,
    OccurrenceNotFound,
    ValidationFailed,
)
from ..models.scheduling_models import ScheduledShift, StaffShift
from ..schemas.scheduling_schemas import ReplacementCandidate, StaffShiftUpdate
from ..utils.time_utils import check_date_range, utcnow
from .conflict_service import ConflictService
from .schedule_lock_service import ScheduleLockService
from .staff_directory import StaffDirectory, SqlStaffDirectory

logger = logging.getLogger(__name__)


_LEAVE = [AssignmentStatus.APPROVED_LEAVE_VALID, AssignmentStatus.APPROVED_LEAVE_EXCEEDED]

# current status -> statuses it may move to
ALLOWED_TRANSITIONS = {
    AssignmentStatus.DRAFT: [
        AssignmentStatus.DRAFT,
        AssignmentStatus.PENDING,
        AssignmentStatus.PUBLISHED,
        AssignmentStatus.CONFLICTED,
        AssignmentStatus.REQUEST_CHANGE,
        *_LEAVE,
    ],
    AssignmentStatus.PENDING: [
        AssignmentStatus.DRAFT,
        AssignmentStatus.PUBLISHED,
        AssignmentStatus.CONFLICTED,
        AssignmentStatus.REQUEST_CHANGE,
        *_LEAVE,
    ],
    AssignmentStatus.PUBLISHED: [
        AssignmentStatus.DRAFT,
        AssignmentStatus.CONFLICTED,
        AssignmentStatus.REQUEST_CHANGE,
        *_LEAVE,
    ],
    AssignmentStatus.CONFLICTED: [
        AssignmentStatus.DRAFT,
        AssignmentStatus.REQUEST_CHANGE,
    ],
    AssignmentStatus.REQUEST_CHANGE: [
        AssignmentStatus.DRAFT,
        AssignmentStatus.REQUEST_CHANGE,
    ],
    AssignmentStatus.APPROVED_LEAVE_VALID: [
        AssignmentStatus.DRAFT,
        AssignmentStatus.REQUEST_CHANGE,
        *_LEAVE,
    ],
    AssignmentStatus.APPROVED_LEAVE_EXCEEDED: [
        AssignmentStatus.DRAFT,
        AssignmentStatus.REQUEST_CHANGE,
    ],
}

# Targets a manager may set directly; PUBLISHED, CONFLICTED and the leave
# statuses are only reached through publish, conflict checks and leave events.
MANAGER_TARGETS = frozenset(
    {AssignmentStatus.DRAFT, AssignmentStatus.PENDING, AssignmentStatus.REQUEST_CHANGE}
)

# Overlapping peers in these statuses are flagged CONFLICTED when a new
# assignment collides with them
_AUTO_CONFLICT_STATUSES = frozenset(
    {AssignmentStatus.DRAFT, AssignmentStatus.PENDING, AssignmentStatus.PUBLISHED}
)

# Assignments whose staff member can be swapped out
REPLACEABLE_STATUSES = frozenset({AssignmentStatus.CONFLICTED, AssignmentStatus.REQUEST_CHANGE})


class AssignmentService:
    """
    Ledger of staff-to-occurrence assignments.

    Owns the assignment status machine. Conflicts are tolerated on the
    default assign path: the new assignment and the peers it overlaps are
    marked CONFLICTED instead of the insert being refused.
    """

    def __init__(
        self,
        db: Session,
        directory: Optional[StaffDirectory] = None,
        settings: Optional[SchedulingSettings] = None,
        lock_service: Optional[ScheduleLockService] = None,
        conflict_service: Optional[ConflictService] = None,
    ):
        self.db = db
        self.directory = directory or SqlStaffDirectory(db)
        self.settings = settings or get_scheduling_settings()
        self.lock_service = lock_service or ScheduleLockService(db, self.directory, self.settings)
        self.conflict_service = conflict_service or ConflictService(db)

    def assign(
        self,
        occurrence_id: int,
        staff_id: int,
        note: Optional[str] = None,
        strict: bool = False,
        created_by_id: Optional[int] = None,
    ) -> StaffShift:
        """
        Assign a staff member to a scheduled shift in DRAFT status.

        With ``strict`` the call fails with ConflictDetected instead of
        inserting when the staff member already works an overlapping shift.
        """
        occurrence = self.db.query(ScheduledShift).filter(ScheduledShift.id == occurrence_id).first()
        if not occurrence:
            raise OccurrenceNotFound(occurrence_id)

        # Raises StaffNotFound for unknown staff
        self.directory.get_staff_primary_role(staff_id)
        self.lock_service.ensure_unlocked(occurrence.branch_id, occurrence.date)

        shift_date = occurrence.date
        if strict:
            conflicts = [
                a
                for a in self.conflict_service.find_conflicts(
                    staff_id, shift_date, occurrence.start_time, occurrence.end_time
                )
                if a.scheduled_shift_id != occurrence_id
            ]
            if conflicts:
                raise ConflictDetected(staff_id, shift_date, [a.id for a in conflicts])

        now = utcnow()
        assignment = StaffShift(
            scheduled_shift_id=occurrence_id,
            staff_id=staff_id,
            note=note,
            status=AssignmentStatus.DRAFT,
            status_changed_at=now,
            created_by_id=created_by_id,
        )
        self.db.add(assignment)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise DuplicateAssignment(occurrence_id, staff_id, shift_date)

        self.db.refresh(assignment)
        logger.info(
            f"Assigned staff {staff_id} to scheduled shift {occurrence_id} "
            f"on {shift_date} (assignment {assignment.id})"
        )

        self.flag_conflicts(assignment)
        return assignment

    def flag_conflicts(self, assignment: StaffShift) -> List[StaffShift]:
        """
        Mark ``assignment`` and the peers it overlaps as CONFLICTED.

        Returns the overlapping peers. Nothing changes when there are none.
        """
        peers = self.conflict_service.conflicts_for_assignment(assignment)
        if not peers:
            return []

        if assignment.status in _AUTO_CONFLICT_STATUSES:
            self.apply_transition(assignment, AssignmentStatus.CONFLICTED)
        for peer in peers:
            if peer.status in _AUTO_CONFLICT_STATUSES:
                self.apply_transition(peer, AssignmentStatus.CONFLICTED)
        self.db.commit()

        logger.warning(
            f"Assignment {assignment.id} for staff {assignment.staff_id} overlaps "
            f"assignments {[p.id for p in peers]}"
        )
        return peers

    def release_conflicts(self, former_peers: Iterable[StaffShift]) -> List[StaffShift]:
        """
        Return CONFLICTED assignments that no longer overlap anything to DRAFT.

        Called with the peers of an assignment that was just deleted or left
        the conflict peer statuses. Returns the released assignments.
        """
        released = []
        for peer in former_peers:
            if peer.status != AssignmentStatus.CONFLICTED:
                continue
            if self.conflict_service.conflicts_for_assignment(peer):
                continue
            self.apply_transition(peer, AssignmentStatus.DRAFT)
            released.append(peer)

        if released:
            self.db.commit()
            logger.info(f"Released assignments {[p.id for p in released]} from CONFLICTED")
        return released

    def conflicted_peers(self, assignment: StaffShift) -> List[StaffShift]:
        if assignment.status not in CONFLICT_PEER_STATUSES:
            return []
        return [
            peer
            for peer in self.conflict_service.conflicts_for_assignment(assignment)
            if peer.status == AssignmentStatus.CONFLICTED
        ]

    def get_assignment(self, assignment_id: int) -> StaffShift:
        assignment = (
            self.db.query(StaffShift)
            .options(joinedload(StaffShift.scheduled_shift))
            .filter(StaffShift.id == assignment_id)
            .first()
        )
        if not assignment:
            raise AssignmentNotFound(assignment_id)
        return assignment

    def list_assignments(
        self,
        branch_id: int,
        start_date: date,
        end_date: date,
        staff_id: Optional[int] = None,
        statuses: Optional[Iterable[AssignmentStatus]] = None,
    ) -> List[StaffShift]:
        check_date_range(start_date, end_date, self.settings.max_date_range_days)

        query = (
            self.db.query(StaffShift)
            .join(StaffShift.scheduled_shift)
            .options(contains_eager(StaffShift.scheduled_shift))
            .filter(
                and_(
                    ScheduledShift.branch_id == branch_id,
                    ScheduledShift.date >= start_date,
                    ScheduledShift.date <= end_date,
                )
            )
        )
        if staff_id is not None:
            query = query.filter(StaffShift.staff_id == staff_id)
        if statuses:
            query = query.filter(StaffShift.status.in_(list(statuses)))
        return query.order_by(ScheduledShift.date, ScheduledShift.start_time, StaffShift.id).all()

    def delete_assignment(self, assignment_id: int, manager_override: bool = False) -> None:
        """
        Remove an assignment.

        DRAFT and PENDING assignments can always be removed, REQUEST_CHANGE
        only with a manager override. A PUBLISHED assignment has to be
        unpublished first; CONFLICTED and leave-marked ones reset to DRAFT.
        """
        assignment = self.get_assignment(assignment_id)
        current = assignment.status

        if current == AssignmentStatus.REQUEST_CHANGE and not manager_override:
            raise InvalidTransition(
                f"Assignment {assignment_id} has a pending change request; "
                "deleting it requires a manager override",
                context={"assignment_id": assignment_id, "status": current},
            )
        if current == AssignmentStatus.PUBLISHED:
            raise InvalidTransition(
                f"Assignment {assignment_id} is published; unpublish it before deleting",
                context={"assignment_id": assignment_id, "status": current},
            )
        if current not in (
            AssignmentStatus.DRAFT,
            AssignmentStatus.PENDING,
            AssignmentStatus.REQUEST_CHANGE,
        ):
            raise InvalidTransition(
                f"Assignment {assignment_id} is {current.value}; reset it to DRAFT before deleting",
                context={"assignment_id": assignment_id, "status": current},
            )

        occurrence = assignment.scheduled_shift
        self.lock_service.ensure_unlocked(occurrence.branch_id, occurrence.date)

        former_peers = self.conflicted_peers(assignment)
        staff_id = assignment.staff_id
        self.db.delete(assignment)
        self.db.commit()

        logger.info(f"Deleted assignment {assignment_id} of staff {staff_id} ({current.value})")
        self.release_conflicts(former_peers)

    # Status transitions

    def apply_transition(
        self,
        assignment: StaffShift,
        new_status: AssignmentStatus,
        reason: Optional[str] = None,
    ) -> AssignmentStatus:
        """
        Validate and apply a status change without committing.

        Returns the previous status.
        """
        old_status = assignment.status
        if new_status not in ALLOWED_TRANSITIONS.get(old_status, []):
            logger.warning(
                f"Rejected transition of assignment {assignment.id} "
                f"from {old_status.value} to {new_status.value}"
            )
            raise InvalidTransition(
                f"Invalid status transition from {old_status.value} to {new_status.value}",
                context={
                    "assignment_id": assignment.id,
                    "from_status": old_status,
                    "to_status": new_status,
                },
            )

        now = utcnow()
        assignment.status = new_status
        assignment.status_changed_at = now

        if new_status == AssignmentStatus.PUBLISHED:
            assignment.published_at = now
        elif new_status == AssignmentStatus.DRAFT:
            assignment.published_at = None
            assignment.responded_at = None
            assignment.change_reason = None
        elif new_status == AssignmentStatus.REQUEST_CHANGE:
            assignment.change_reason = reason

        if old_status != new_status:
            logger.info(
                f"Assignment {assignment.id}: {old_status.value} -> {new_status.value}"
            )
        return old_status

    def transition(
        self, assignment_id: int, new_status: AssignmentStatus, reason: Optional[str] = None
    ) -> StaffShift:
        """Manager status edit; limited to DRAFT, PENDING and REQUEST_CHANGE targets"""
        if new_status not in MANAGER_TARGETS:
            raise InvalidTransition(
                f"Status {new_status.value} cannot be set directly",
                context={"assignment_id": assignment_id, "to_status": new_status},
            )

        assignment = self.get_assignment(assignment_id)
        occurrence = assignment.scheduled_shift
        self.lock_service.ensure_unlocked(occurrence.branch_id, occurrence.date)

        self._commit_transition(assignment, new_status, reason)
        return assignment

    def _commit_transition(
        self, assignment: StaffShift, new_status: AssignmentStatus, reason: Optional[str] = None
    ) -> None:
        """Apply and commit; peers left behind by a move out of the peer set are re-checked"""
        former_peers = []
        if new_status not in CONFLICT_PEER_STATUSES:
            former_peers = self.conflicted_peers(assignment)
        self.apply_transition(assignment, new_status, reason)
        self.db.commit()
        self.db.refresh(assignment)
        self.release_conflicts(former_peers)

    def mark_pending(self, assignment_id: int) -> StaffShift:
        assignment = self.get_assignment(assignment_id)
        if assignment.status != AssignmentStatus.DRAFT:
            raise InvalidTransition(
                f"Only DRAFT assignments can be marked pending, assignment "
                f"{assignment_id} is {assignment.status.value}",
                context={"assignment_id": assignment_id, "status": assignment.status},
            )
        return self.transition(assignment_id, AssignmentStatus.PENDING)

    def unpublish(self, assignment_id: int) -> StaffShift:
        assignment = self.get_assignment(assignment_id)
        if assignment.status != AssignmentStatus.PUBLISHED:
            raise InvalidTransition(
                f"Assignment {assignment_id} is {assignment.status.value}, not PUBLISHED",
                context={"assignment_id": assignment_id, "status": assignment.status},
            )
        return self.transition(assignment_id, AssignmentStatus.DRAFT)

    def reset_to_draft(self, assignment_id: int) -> StaffShift:
        return self.transition(assignment_id, AssignmentStatus.DRAFT)

    # Staff-initiated changes

    def request_change(self, assignment_id: int, staff_id: int, reason: str) -> StaffShift:
        assignment = self._get_owned(assignment_id, staff_id)
        self._commit_transition(assignment, AssignmentStatus.REQUEST_CHANGE, reason)
        return assignment

    def respond(
        self, assignment_id: int, staff_id: int, accept: bool, reason: Optional[str] = None
    ) -> StaffShift:
        """Accept or reject a published assignment on behalf of its staff member"""
        assignment = self._get_owned(assignment_id, staff_id)
        if assignment.status != AssignmentStatus.PUBLISHED:
            raise InvalidTransition(
                f"Only published assignments can be responded to, assignment "
                f"{assignment_id} is {assignment.status.value}",
                context={"assignment_id": assignment_id, "status": assignment.status},
            )

        assignment.responded_at = utcnow()
        if accept:
            self.db.commit()
            self.db.refresh(assignment)
        else:
            self._commit_transition(assignment, AssignmentStatus.REQUEST_CHANGE, reason)

        logger.info(
            f"Staff {staff_id} {'accepted' if accept else 'rejected'} assignment {assignment_id}"
        )
        return assignment

    def _get_owned(self, assignment_id: int, staff_id: int) -> StaffShift:
        assignment = self.get_assignment(assignment_id)
        if assignment.staff_id != staff_id:
            raise NotAssignee(assignment_id, staff_id)
        return assignment

    # Editing and staff replacement

    def update_assignment(self, assignment_id: int, data: StaffShiftUpdate) -> StaffShift:
        """Edit the assignment note; staff changes go through replace_staff"""
        assignment = self.get_assignment(assignment_id)
        occurrence = assignment.scheduled_shift
        self.lock_service.ensure_unlocked(occurrence.branch_id, occurrence.date)

        assignment.note = data.note
        self.db.commit()
        self.db.refresh(assignment)
        return assignment

    def replacement_candidates(self, assignment_id: int) -> List[ReplacementCandidate]:
        """
        Staff who could take over an assignment.

        Candidates are active staff at the shift's branch with the same
        primary role as the current assignee, not already on the shift and
        free of overlapping work that day.
        """
        assignment = self.get_assignment(assignment_id)
        occurrence = assignment.scheduled_shift
        role_id = self.directory.get_staff_primary_role(assignment.staff_id, include_inactive=True)

        on_shift = {
            row.staff_id
            for row in self.db.query(StaffShift.staff_id).filter(
                StaffShift.scheduled_shift_id == occurrence.id
            )
        }
        candidates = []
        for staff_id in self.directory.list_staff_with_role(occurrence.branch_id, role_id):
            if staff_id in on_shift:
                continue
            if self.conflict_service.has_conflict(
                staff_id, occurrence.date, occurrence.start_time, occurrence.end_time
            ):
                continue
            candidates.append(ReplacementCandidate(staff_id=staff_id, role_id=role_id))
        return candidates

    def replace_staff(self, assignment_id: int, new_staff_id: int) -> StaffShift:
        """
        Hand a CONFLICTED or REQUEST_CHANGE assignment to another staff member.

        The assignment keeps its id and note, moves to the new staff member
        and starts over as DRAFT. The new staff member must not already be on
        the shift or work an overlapping shift that day.
        """
        assignment = self.get_assignment(assignment_id)
        if assignment.status not in REPLACEABLE_STATUSES:
            raise InvalidTransition(
                f"Only CONFLICTED or REQUEST_CHANGE assignments can be handed over, "
                f"assignment {assignment_id} is {assignment.status.value}",
                context={"assignment_id": assignment_id, "status": assignment.status},
            )
        previous_staff_id = assignment.staff_id
        if new_staff_id == previous_staff_id:
            raise ValidationFailed(
                f"Staff {new_staff_id} already holds assignment {assignment_id}",
                assignment_id=assignment_id,
                staff_id=new_staff_id,
            )

        occurrence = assignment.scheduled_shift
        # Raises StaffNotFound for unknown or inactive staff
        self.directory.get_staff_primary_role(new_staff_id)
        self.lock_service.ensure_unlocked(occurrence.branch_id, occurrence.date)

        already_on_shift = (
            self.db.query(StaffShift.id)
            .filter(
                StaffShift.scheduled_shift_id == occurrence.id,
                StaffShift.staff_id == new_staff_id,
            )
            .first()
        )
        if already_on_shift:
            raise DuplicateAssignment(occurrence.id, new_staff_id, occurrence.date)

        conflicts = self.conflict_service.find_conflicts(
            new_staff_id, occurrence.date, occurrence.start_time, occurrence.end_time
        )
        if conflicts:
            raise ConflictDetected(new_staff_id, occurrence.date, [a.id for a in conflicts])

        former_peers = self.conflicted_peers(assignment)
        self.apply_transition(assignment, AssignmentStatus.DRAFT)
        assignment.staff_id = new_staff_id
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise DuplicateAssignment(occurrence.id, new_staff_id, occurrence.date)
        self.db.refresh(assignment)

        logger.info(
            f"Assignment {assignment_id} handed from staff {previous_staff_id} "
            f"to staff {new_staff_id}"
        )
        self.release_conflicts(former_peers)
        return assignment
