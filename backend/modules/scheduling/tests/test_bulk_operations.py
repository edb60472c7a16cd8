"""
Tests for bulk-assign, copy-week and publish
"""
import pytest
from datetime import date, time, timedelta
from unittest.mock import patch

from modules.scheduling.config.scheduling_config import SchedulingSettings
from modules.scheduling.enums.scheduling_enums import AssignmentStatus
from modules.scheduling.exceptions.scheduling_exceptions import BranchNotFound, ValidationFailed
from modules.scheduling.models.scheduling_models import (
    ScheduledShift,
    SchedulePublication,
    StaffShift,
)
from modules.scheduling.schemas.scheduling_schemas import (
    BulkAssignRequest,
    CopyWeekRequest,
    LeaveApprovedEvent,
    PublishRequest,
    ScheduleLockCreate,
)
from modules.scheduling.services.bulk_operations_service import BulkOperationsService
from modules.scheduling.tests.factories import WAITER, WEEK_START, AdHocShiftFactory, weekday

NEXT_WEEK = WEEK_START + timedelta(days=7)


def lock_day(lock_service, day: date, branch_id: int = 1):
    return lock_service.lock(
        ScheduleLockCreate(branch_id=branch_id, start_date=day, end_date=day, lock_reason="Payroll")
    )


class TestBulkAssign:
    def test_week_of_assignments_with_one_existing(
        self, bulk_service, occurrence_service, assignment_service, morning_template
    ):
        wednesday = occurrence_service.create_occurrence(morning_template.id, 1, weekday(2))
        existing = assignment_service.assign(wednesday.id, 1)

        report = bulk_service.bulk_assign(
            BulkAssignRequest(
                branch_id=1,
                staff_ids=[1, 2, 3],
                template_id=morning_template.id,
                start_date=weekday(0),
                end_date=weekday(4),
            )
        )

        assert len(report.created) == 14
        assert len(report.skipped_duplicate) == 1
        assert report.failed == []

        skipped = report.skipped_duplicate[0]
        assert (skipped.staff_id, skipped.date) == (1, weekday(2))
        assert skipped.assignment_id == existing.id
        assert skipped.error_code == "DUPLICATE_ASSIGNMENT"

        assert all(unit.status == AssignmentStatus.DRAFT for unit in report.created)
        assert [(u.date, u.staff_id) for u in report.created[:3]] == [
            (weekday(0), 1),
            (weekday(0), 2),
            (weekday(0), 3),
        ]

    def test_occurrences_are_created_once_per_date(
        self, bulk_service, morning_template, db_session
    ):
        bulk_service.bulk_assign(
            BulkAssignRequest(
                branch_id=1,
                staff_ids=[1, 2],
                template_id=morning_template.id,
                start_date=weekday(0),
                end_date=weekday(4),
            )
        )

        assert db_session.query(ScheduledShift).count() == 5
        assert db_session.query(StaffShift).count() == 10

    def test_failures_carry_context(self, bulk_service, morning_template):
        report = bulk_service.bulk_assign(
            BulkAssignRequest(
                branch_id=1,
                staff_ids=[1, 99],
                template_id=morning_template.id,
                start_date=weekday(0),
                end_date=weekday(6),
            )
        )

        assert len(report.created) == 5
        unknown_staff = [u for u in report.failed if u.error_code == "NOT_FOUND"]
        weekend = [u for u in report.failed if u.error_code == "TEMPLATE_NOT_SCHEDULABLE"]

        assert {u.staff_id for u in unknown_staff} == {99}
        assert len(unknown_staff) == 5
        assert all(u.scheduled_shift_id is not None for u in unknown_staff)

        assert len(weekend) == 4
        assert {u.date for u in weekend} == {weekday(5), weekday(6)}
        assert all(u.scheduled_shift_id is None and u.reason for u in weekend)

    def test_locked_date_fails_only_that_date(self, bulk_service, lock_service, morning_template):
        lock_day(lock_service, weekday(2))

        report = bulk_service.bulk_assign(
            BulkAssignRequest(
                branch_id=1,
                staff_ids=[1],
                template_id=morning_template.id,
                start_date=weekday(0),
                end_date=weekday(4),
            )
        )

        assert len(report.created) == 4
        assert [(u.date, u.error_code) for u in report.failed] == [(weekday(2), "SCHEDULE_LOCKED")]

    def test_single_scheduled_shift_mode(self, bulk_service, occurrence_service):
        event = occurrence_service.create_ad_hoc_occurrence(AdHocShiftFactory(shift_date=weekday(5)).build())

        report = bulk_service.bulk_assign(
            BulkAssignRequest(
                branch_id=1,
                staff_ids=[1, 2],
                scheduled_shift_id=event.id,
                start_date=weekday(0),
                end_date=weekday(6),
            )
        )

        assert [(u.staff_id, u.date, u.scheduled_shift_id) for u in report.created] == [
            (1, weekday(5), event.id),
            (2, weekday(5), event.id),
        ]

    def test_scheduled_shift_outside_range_is_rejected(self, bulk_service, occurrence_service):
        event = occurrence_service.create_ad_hoc_occurrence(AdHocShiftFactory(shift_date=weekday(5)).build())

        with pytest.raises(ValidationFailed):
            bulk_service.bulk_assign(
                BulkAssignRequest(
                    branch_id=1,
                    staff_ids=[1],
                    scheduled_shift_id=event.id,
                    start_date=weekday(0),
                    end_date=weekday(4),
                )
            )

    def test_request_needs_exactly_one_selector(self, morning_template):
        with pytest.raises(ValueError):
            BulkAssignRequest(
                branch_id=1,
                staff_ids=[1],
                template_id=morning_template.id,
                scheduled_shift_id=1,
                start_date=weekday(0),
                end_date=weekday(0),
            )
        with pytest.raises(ValueError):
            BulkAssignRequest(branch_id=1, staff_ids=[1], start_date=weekday(0), end_date=weekday(0))

    def test_limits_are_checked_before_any_work(self, db_session, directory, morning_template):
        service = BulkOperationsService(
            db_session, directory, SchedulingSettings(max_bulk_staff=2, max_date_range_days=7)
        )

        with pytest.raises(ValidationFailed):
            service.bulk_assign(
                BulkAssignRequest(
                    branch_id=1,
                    staff_ids=[1, 2, 3],
                    template_id=morning_template.id,
                    start_date=weekday(0),
                    end_date=weekday(0),
                )
            )
        with pytest.raises(ValidationFailed):
            service.bulk_assign(
                BulkAssignRequest(
                    branch_id=1,
                    staff_ids=[1],
                    template_id=morning_template.id,
                    start_date=weekday(0),
                    end_date=weekday(13),
                )
            )

        assert db_session.query(ScheduledShift).count() == 0

    def test_template_from_another_branch(self, bulk_service, morning_template):
        with pytest.raises(ValidationFailed):
            bulk_service.bulk_assign(
                BulkAssignRequest(
                    branch_id=2,
                    staff_ids=[7],
                    template_id=morning_template.id,
                    start_date=weekday(0),
                    end_date=weekday(0),
                )
            )

    def test_unknown_branch(self, bulk_service, morning_template):
        with pytest.raises(BranchNotFound):
            bulk_service.bulk_assign(
                BulkAssignRequest(
                    branch_id=999,
                    staff_ids=[1],
                    template_id=morning_template.id,
                    start_date=weekday(0),
                    end_date=weekday(0),
                )
            )


@pytest.fixture
def source_week(occurrence_service, assignment_service, morning_template):
    """Morning on Monday and Tuesday plus a Saturday event, with staff assigned"""
    monday = occurrence_service.create_occurrence(morning_template.id, 1, weekday(0))
    tuesday = occurrence_service.create_occurrence(morning_template.id, 1, weekday(1))
    event = occurrence_service.create_ad_hoc_occurrence(AdHocShiftFactory(shift_date=weekday(5)).build())

    assignment_service.assign(monday.id, 1, note="Keys")
    assignment_service.assign(monday.id, 2)
    published = assignment_service.assign(tuesday.id, 1)
    assignment_service.assign(event.id, 3)

    assignment_service.apply_transition(published, AssignmentStatus.PUBLISHED)
    assignment_service.db.commit()
    return [monday, tuesday, event]


class TestCopyWeek:
    def test_copies_shifts_and_assignments_as_draft(
        self, bulk_service, occurrence_service, source_week, db_session
    ):
        result = bulk_service.copy_week(
            CopyWeekRequest(branch_id=1, source_week_start=WEEK_START, target_week_starts=[NEXT_WEEK])
        )

        assert result.total_copied == 3
        assert result.total_skipped == 0
        assert result.copied_weeks == [NEXT_WEEK]
        assert result.failed == []

        copies = occurrence_service.list_occurrences(1, NEXT_WEEK, NEXT_WEEK + timedelta(days=6))
        assert [(c.date, c.name) for c in copies] == [
            (weekday(0, NEXT_WEEK), "Morning"),
            (weekday(1, NEXT_WEEK), "Morning"),
            (weekday(5, NEXT_WEEK), "Private event"),
        ]
        assert [(r.role_id, r.quantity) for r in copies[0].requirements] == [(WAITER, 2)]

        copied_assignments = (
            db_session.query(StaffShift)
            .join(StaffShift.scheduled_shift)
            .filter(ScheduledShift.date >= NEXT_WEEK)
            .order_by(StaffShift.id)
            .all()
        )
        assert [(a.staff_id, a.status) for a in copied_assignments] == [
            (1, AssignmentStatus.DRAFT),
            (2, AssignmentStatus.DRAFT),
            (1, AssignmentStatus.DRAFT),
            (3, AssignmentStatus.DRAFT),
        ]
        assert copied_assignments[0].note == "Keys"
        assert all(a.published_at is None for a in copied_assignments)

    def test_existing_target_shift_is_skipped_not_merged(
        self, bulk_service, occurrence_service, assignment_service, morning_template, source_week
    ):
        target_monday = occurrence_service.create_occurrence(
            morning_template.id, 1, weekday(0, NEXT_WEEK)
        )
        assignment_service.assign(target_monday.id, 3)

        result = bulk_service.copy_week(
            CopyWeekRequest(branch_id=1, source_week_start=WEEK_START, target_week_starts=[NEXT_WEEK])
        )

        assert result.total_copied == 2
        assert result.total_skipped == 1
        assert result.skipped_duplicates == [weekday(0, NEXT_WEEK)]

        kept = assignment_service.list_assignments(
            1, weekday(0, NEXT_WEEK), weekday(0, NEXT_WEEK)
        )
        assert [a.staff_id for a in kept] == [3]

    def test_copies_overlapping_target_work_are_flagged(
        self, bulk_service, occurrence_service, assignment_service, source_week
    ):
        late_event = occurrence_service.create_ad_hoc_occurrence(
            AdHocShiftFactory(
                shift_date=weekday(0, NEXT_WEEK),
                name="Late event",
                start_time=time(14, 0),
                end_time=time(22, 0),
            ).build()
        )
        existing = assignment_service.assign(late_event.id, 1)

        result = bulk_service.copy_week(
            CopyWeekRequest(branch_id=1, source_week_start=WEEK_START, target_week_starts=[NEXT_WEEK])
        )

        assert result.total_copied == 3
        monday = assignment_service.list_assignments(1, weekday(0, NEXT_WEEK), weekday(0, NEXT_WEEK))
        statuses = {(a.staff_id, a.scheduled_shift.name): a.status for a in monday}
        assert statuses == {
            (1, "Morning"): AssignmentStatus.CONFLICTED,
            (2, "Morning"): AssignmentStatus.DRAFT,
            (1, "Late event"): AssignmentStatus.CONFLICTED,
        }
        assert assignment_service.get_assignment(existing.id).status == AssignmentStatus.CONFLICTED

    def test_repeating_a_copy_skips_everything(self, bulk_service, source_week):
        request = CopyWeekRequest(
            branch_id=1, source_week_start=WEEK_START, target_week_starts=[NEXT_WEEK]
        )
        bulk_service.copy_week(request)
        again = bulk_service.copy_week(request)

        assert again.total_copied == 0
        assert again.total_skipped == 3
        assert again.copied_weeks == []

    def test_dates_are_aligned_to_week_start(self, bulk_service, source_week):
        result = bulk_service.copy_week(
            CopyWeekRequest(
                branch_id=1,
                source_week_start=weekday(3),
                target_week_starts=[weekday(2, NEXT_WEEK), NEXT_WEEK],
            )
        )

        assert result.copied_weeks == [NEXT_WEEK]
        assert result.total_copied == 3

    def test_several_target_weeks(self, bulk_service, source_week):
        later = NEXT_WEEK + timedelta(days=7)
        result = bulk_service.copy_week(
            CopyWeekRequest(
                branch_id=1, source_week_start=WEEK_START, target_week_starts=[NEXT_WEEK, later]
            )
        )

        assert result.copied_weeks == [NEXT_WEEK, later]
        assert result.total_copied == 6

    def test_target_aligning_to_source_is_rejected(self, bulk_service, source_week):
        with pytest.raises(ValidationFailed):
            bulk_service.copy_week(
                CopyWeekRequest(branch_id=1, source_week_start=WEEK_START, target_week_starts=[weekday(3)])
            )

    def test_source_listed_as_target_is_invalid(self):
        with pytest.raises(ValueError):
            CopyWeekRequest(branch_id=1, source_week_start=WEEK_START, target_week_starts=[WEEK_START])

    def test_locked_target_date_is_reported(self, bulk_service, lock_service, source_week):
        lock_day(lock_service, weekday(1, NEXT_WEEK))

        result = bulk_service.copy_week(
            CopyWeekRequest(branch_id=1, source_week_start=WEEK_START, target_week_starts=[NEXT_WEEK])
        )

        assert result.total_copied == 2
        assert [(f.target_date, f.error_code) for f in result.failed] == [
            (weekday(1, NEXT_WEEK), "SCHEDULE_LOCKED")
        ]

    def test_inactive_template_is_not_copied(self, bulk_service, template_service, morning_template, source_week):
        template_service.deactivate_template(morning_template.id)

        result = bulk_service.copy_week(
            CopyWeekRequest(branch_id=1, source_week_start=WEEK_START, target_week_starts=[NEXT_WEEK])
        )

        assert result.total_copied == 1
        assert {f.error_code for f in result.failed} == {"TEMPLATE_NOT_SCHEDULABLE"}
        assert len(result.failed) == 2

    def test_too_many_target_weeks(self, db_session, directory, source_week):
        service = BulkOperationsService(db_session, directory, SchedulingSettings(max_copy_target_weeks=1))

        with pytest.raises(ValidationFailed):
            service.copy_week(
                CopyWeekRequest(
                    branch_id=1,
                    source_week_start=WEEK_START,
                    target_week_starts=[NEXT_WEEK, NEXT_WEEK + timedelta(days=7)],
                )
            )

    def test_empty_source_week(self, bulk_service):
        result = bulk_service.copy_week(
            CopyWeekRequest(branch_id=1, source_week_start=WEEK_START, target_week_starts=[NEXT_WEEK])
        )

        assert result.total_copied == 0
        assert result.copied_weeks == []
        assert result.message


class TestPublish:
    @pytest.fixture
    def monday(self, occurrence_service, morning_template, evening_template):
        morning = occurrence_service.create_occurrence(morning_template.id, 1, WEEK_START)
        evening = occurrence_service.create_occurrence(evening_template.id, 1, WEEK_START)
        return morning, evening

    def test_every_selected_assignment_ends_published_or_conflicted(
        self, bulk_service, assignment_service, monday, db_session
    ):
        morning, evening = monday
        double_booked = [assignment_service.assign(morning.id, 1)]
        assignment_service.assign(morning.id, 2)
        assignment_service.assign(evening.id, 4)
        double_booked.append(assignment_service.assign(evening.id, 1))
        # Overlapping drafts, as if the conflict had never been flagged
        for assignment in double_booked:
            assignment_service.reset_to_draft(assignment.id)

        result = bulk_service.publish(
            PublishRequest(branch_id=1, start_date=weekday(0), end_date=weekday(6), published_by_id=42)
        )

        assert result.total_assignments == 4
        assert result.published_count == 2
        assert result.conflicted_count == 2
        assert result.published_count + result.conflicted_count == result.total_assignments

        statuses = {(a.staff_id, a.scheduled_shift_id): a.status for a in result.assignments}
        assert statuses == {
            (1, morning.id): AssignmentStatus.CONFLICTED,
            (2, morning.id): AssignmentStatus.PUBLISHED,
            (4, evening.id): AssignmentStatus.PUBLISHED,
            (1, evening.id): AssignmentStatus.CONFLICTED,
        }
        assert all(
            a.published_at is not None
            for a in result.assignments
            if a.status == AssignmentStatus.PUBLISHED
        )

        publication = db_session.query(SchedulePublication).one()
        assert publication.id == result.publication_id
        assert publication.published_by_id == 42
        assert (publication.published_count, publication.conflicted_count) == (2, 2)

    def test_pending_is_published(self, bulk_service, assignment_service, monday):
        morning, _ = monday
        assignment = assignment_service.assign(morning.id, 2)
        assignment_service.mark_pending(assignment.id)

        result = bulk_service.publish(PublishRequest(branch_id=1, start_date=WEEK_START, end_date=WEEK_START))

        assert [a.status for a in result.assignments] == [AssignmentStatus.PUBLISHED]

    def test_already_published_assignments_are_not_selected(self, bulk_service, assignment_service, monday):
        morning, _ = monday
        assignment_service.assign(morning.id, 2)
        request = PublishRequest(branch_id=1, start_date=WEEK_START, end_date=WEEK_START)

        bulk_service.publish(request)
        again = bulk_service.publish(request)

        assert again.total_assignments == 0
        assert again.assignments == []

    def test_scheduled_shift_filter(self, bulk_service, assignment_service, monday):
        morning, evening = monday
        untouched = assignment_service.assign(morning.id, 2)
        assignment_service.assign(evening.id, 4)

        result = bulk_service.publish(
            PublishRequest(
                branch_id=1,
                start_date=WEEK_START,
                end_date=WEEK_START,
                scheduled_shift_ids=[evening.id],
            )
        )

        assert [a.staff_id for a in result.assignments] == [4]
        assert assignment_service.get_assignment(untouched.id).status == AssignmentStatus.DRAFT

    def test_locked_dates_are_skipped(
        self, bulk_service, assignment_service, occurrence_service, lock_service, morning_template, monday
    ):
        morning, _ = monday
        assignment_service.assign(morning.id, 2)
        tuesday = occurrence_service.create_occurrence(morning_template.id, 1, weekday(1))
        held_back = assignment_service.assign(tuesday.id, 2)
        lock_day(lock_service, weekday(1))

        result = bulk_service.publish(
            PublishRequest(branch_id=1, start_date=weekday(0), end_date=weekday(6))
        )

        assert result.skipped_locked_ids == [held_back.id]
        assert result.total_assignments == 1
        assert assignment_service.get_assignment(held_back.id).status == AssignmentStatus.DRAFT

    def test_other_branches_are_untouched(self, bulk_service, occurrence_service, assignment_service):
        harbor = occurrence_service.create_ad_hoc_occurrence(
            AdHocShiftFactory(branch_id=2, start_time=time(10, 0), end_time=time(14, 0)).build()
        )
        assignment = assignment_service.assign(harbor.id, 7)

        result = bulk_service.publish(PublishRequest(branch_id=1, start_date=WEEK_START, end_date=WEEK_START))

        assert result.total_assignments == 0
        assert assignment_service.get_assignment(assignment.id).status == AssignmentStatus.DRAFT

    def test_assignment_changed_mid_batch_is_reported_not_raised(
        self, bulk_service, assignment_service, leave_service, monday, db_session
    ):
        morning, _ = monday
        first = assignment_service.assign(morning.id, 1)
        second = assignment_service.assign(morning.id, 2)
        check_overlaps = bulk_service.conflict_service.conflicts_for_assignment

        def leave_lands_during_first(assignment):
            if assignment.id == first.id:
                leave_service.handle_leave_approved(
                    LeaveApprovedEvent(
                        staff_id=2, start_date=WEEK_START, end_date=WEEK_START, balance_sufficient=True
                    )
                )
            return check_overlaps(assignment)

        with patch.object(
            bulk_service.conflict_service, "conflicts_for_assignment", side_effect=leave_lands_during_first
        ):
            result = bulk_service.publish(
                PublishRequest(branch_id=1, start_date=WEEK_START, end_date=WEEK_START)
            )

        assert result.total_assignments == 2
        assert result.published_count == 1
        assert result.conflicted_count == 0
        assert len(result.failed) == 1

        failure = result.failed[0]
        assert (failure.assignment_id, failure.staff_id, failure.date) == (second.id, 2, WEEK_START)
        assert failure.error_code == "INVALID_TRANSITION"
        assert "APPROVED_LEAVE_VALID" in failure.reason

        statuses = {a.id: a.status for a in result.assignments}
        assert statuses == {
            first.id: AssignmentStatus.PUBLISHED,
            second.id: AssignmentStatus.APPROVED_LEAVE_VALID,
        }
        publication = db_session.query(SchedulePublication).one()
        assert (publication.published_count, publication.conflicted_count) == (1, 0)

    def test_assignment_deleted_mid_batch_is_reported(
        self, bulk_service, assignment_service, monday
    ):
        morning, evening = monday
        first = assignment_service.assign(morning.id, 2)
        doomed = assignment_service.assign(evening.id, 4)
        check_overlaps = bulk_service.conflict_service.conflicts_for_assignment

        def delete_during_first(assignment):
            if assignment.id == first.id:
                assignment_service.delete_assignment(doomed.id)
            return check_overlaps(assignment)

        with patch.object(
            bulk_service.conflict_service, "conflicts_for_assignment", side_effect=delete_during_first
        ):
            result = bulk_service.publish(
                PublishRequest(branch_id=1, start_date=WEEK_START, end_date=WEEK_START)
            )

        assert result.published_count == 1
        assert [(f.assignment_id, f.error_code) for f in result.failed] == [(doomed.id, "NOT_FOUND")]
        assert [a.id for a in result.assignments] == [first.id]
