"""
Tests for the template catalog and scheduled shift creation
"""
import pytest
from datetime import time

from modules.scheduling.enums.scheduling_enums import TemplateStatus, Weekday
from modules.scheduling.exceptions.scheduling_exceptions import (
    BranchNotFound,
    DuplicateOccurrence,
    OccurrenceNotFound,
    TemplateNotFound,
    TemplateNotSchedulable,
)
from modules.scheduling.models.scheduling_models import ScheduledShift, StaffShift
from modules.scheduling.schemas.scheduling_schemas import RequirementSchema, ShiftTemplateUpdate
from modules.scheduling.tests.factories import (
    COOK,
    WAITER,
    WEEK_START,
    AdHocShiftFactory,
    ShiftTemplateFactory,
    weekday,
)


class TestTemplateCatalog:
    def test_list_active_templates_filters_status_and_weekday(
        self, template_service, morning_template, evening_template
    ):
        template_service.create_template(
            ShiftTemplateFactory(name="Old brunch", status=TemplateStatus.INACTIVE).build()
        )

        monday = template_service.list_active_templates(1, Weekday.MON)
        sunday = template_service.list_active_templates(1, Weekday.SUN)

        assert [t.name for t in monday] == ["Morning", "Evening"]
        assert [t.name for t in sunday] == ["Evening"]

    def test_list_active_templates_is_per_branch(self, template_service, morning_template):
        assert template_service.list_active_templates(2, Weekday.MON) == []

    def test_list_active_templates_unknown_branch(self, template_service):
        with pytest.raises(BranchNotFound):
            template_service.list_active_templates(999, Weekday.MON)

    def test_create_template_unknown_branch(self, template_service):
        with pytest.raises(BranchNotFound):
            template_service.create_template(ShiftTemplateFactory(branch_id=999).build())

    def test_duplicate_roles_in_requirements_are_rejected(self):
        with pytest.raises(ValueError):
            ShiftTemplateUpdate(
                requirements=[
                    RequirementSchema(role_id=WAITER, quantity=1),
                    RequirementSchema(role_id=WAITER, quantity=2),
                ]
            )

    def test_update_replaces_requirements(self, template_service, morning_template):
        updated = template_service.update_template(
            morning_template.id,
            ShiftTemplateUpdate(
                name="Breakfast",
                requirements=[
                    RequirementSchema(role_id=WAITER, quantity=3),
                    RequirementSchema(role_id=COOK, quantity=1),
                ],
            ),
        )

        assert updated.name == "Breakfast"
        assert [(r.role_id, r.quantity) for r in updated.requirements] == [(WAITER, 3), (COOK, 1)]

    def test_deactivate_template(self, template_service, morning_template):
        template_service.deactivate_template(morning_template.id)
        assert template_service.list_active_templates(1, Weekday.MON) == []
        assert len(template_service.list_templates(1, include_inactive=True)) == 1

    def test_get_unknown_template(self, template_service):
        with pytest.raises(TemplateNotFound):
            template_service.get_template(12345)


class TestCreateOccurrence:
    def test_create_copies_template(self, occurrence_service, morning_template):
        occurrence = occurrence_service.create_occurrence(morning_template.id, 1, WEEK_START)

        assert occurrence.template_id == morning_template.id
        assert occurrence.date == WEEK_START
        assert occurrence.name == "Morning"
        assert (occurrence.start_time, occurrence.end_time) == (time(8, 0), time(16, 0))
        assert [(r.role_id, r.quantity) for r in occurrence.requirements] == [(WAITER, 2)]

    def test_second_create_fails_with_duplicate(self, occurrence_service, morning_template, db_session):
        occurrence_service.create_occurrence(morning_template.id, 1, WEEK_START)

        with pytest.raises(DuplicateOccurrence) as exc_info:
            occurrence_service.create_occurrence(morning_template.id, 1, WEEK_START)

        assert exc_info.value.context["template_id"] == morning_template.id
        assert exc_info.value.context["date"] == WEEK_START
        assert db_session.query(ScheduledShift).count() == 1

    def test_requirements_are_a_snapshot(self, occurrence_service, template_service, morning_template):
        occurrence = occurrence_service.create_occurrence(morning_template.id, 1, WEEK_START)
        template_service.update_template(
            morning_template.id,
            ShiftTemplateUpdate(requirements=[RequirementSchema(role_id=WAITER, quantity=5)]),
        )

        reloaded = occurrence_service.get_occurrence(occurrence.id)
        assert [(r.role_id, r.quantity) for r in reloaded.requirements] == [(WAITER, 2)]

    def test_template_must_run_on_weekday(self, occurrence_service, morning_template):
        saturday = weekday(5)
        with pytest.raises(TemplateNotSchedulable):
            occurrence_service.create_occurrence(morning_template.id, 1, saturday)

    def test_inactive_template_cannot_be_scheduled(
        self, occurrence_service, template_service, morning_template
    ):
        template_service.deactivate_template(morning_template.id)
        with pytest.raises(TemplateNotSchedulable):
            occurrence_service.create_occurrence(morning_template.id, 1, WEEK_START)

    def test_template_of_another_branch(self, occurrence_service, morning_template):
        with pytest.raises(TemplateNotSchedulable):
            occurrence_service.create_occurrence(morning_template.id, 2, WEEK_START)

    def test_unknown_template_and_branch(self, occurrence_service, morning_template):
        with pytest.raises(TemplateNotFound):
            occurrence_service.create_occurrence(999, 1, WEEK_START)
        with pytest.raises(BranchNotFound):
            occurrence_service.create_occurrence(morning_template.id, 999, WEEK_START)

    def test_ad_hoc_occurrence_skips_weekday_check(self, occurrence_service):
        saturday = weekday(5)
        occurrence = occurrence_service.create_ad_hoc_occurrence(
            AdHocShiftFactory(shift_date=saturday).build()
        )

        assert occurrence.template_id is None
        assert occurrence.date == saturday

    def test_get_or_create_reuses_existing(self, occurrence_service, morning_template):
        first, created = occurrence_service.get_or_create_occurrence(morning_template.id, 1, WEEK_START)
        second, created_again = occurrence_service.get_or_create_occurrence(
            morning_template.id, 1, WEEK_START
        )

        assert created is True
        assert created_again is False
        assert first.id == second.id


class TestDeleteAndList:
    def test_delete_cascades_to_assignments(
        self, occurrence_service, assignment_service, morning_template, db_session
    ):
        occurrence = occurrence_service.create_occurrence(morning_template.id, 1, WEEK_START)
        assignment_service.assign(occurrence.id, 1)
        assignment_service.assign(occurrence.id, 2)

        removed = occurrence_service.delete_occurrence(occurrence.id)

        assert removed == 2
        assert db_session.query(StaffShift).count() == 0
        with pytest.raises(OccurrenceNotFound):
            occurrence_service.get_occurrence(occurrence.id)

    def test_delete_unknown_occurrence(self, occurrence_service):
        with pytest.raises(OccurrenceNotFound):
            occurrence_service.delete_occurrence(404)

    def test_list_occurrences_in_range(self, occurrence_service, morning_template, evening_template):
        for offset in range(3):
            occurrence_service.create_occurrence(morning_template.id, 1, weekday(offset))
        occurrence_service.create_occurrence(evening_template.id, 1, weekday(0))
        occurrence_service.create_occurrence(evening_template.id, 1, weekday(6))

        listed = occurrence_service.list_occurrences(1, weekday(0), weekday(1))
        assert [(o.date, o.name) for o in listed] == [
            (weekday(0), "Morning"),
            (weekday(0), "Evening"),
            (weekday(1), "Morning"),
        ]

        grouped = occurrence_service.list_occurrences_grouped_by_date(1, weekday(0), weekday(6))
        assert [g["date"] for g in grouped] == [weekday(0), weekday(1), weekday(2), weekday(6)]
        assert len(grouped[0]["shifts"]) == 2
