from typing import List, Optional
import logging

from sqlalchemy.orm import Session, selectinload

from ..enums.scheduling_enums import TemplateStatus, Weekday
from ..exceptions.scheduling_exceptions import BranchNotFound, TemplateNotFound
from ..models.scheduling_models import ShiftRequirement, ShiftTemplate
from ..schemas.scheduling_schemas import ShiftTemplateCreate, ShiftTemplateUpdate
from .staff_directory import StaffDirectory, SqlStaffDirectory

logger = logging.getLogger(__name__)


class ShiftTemplateService:
    """Catalog of recurring shift definitions per branch"""

    def __init__(self, db: Session, directory: Optional[StaffDirectory] = None):
        self.db = db
        self.directory = directory or SqlStaffDirectory(db)

    def list_active_templates(self, branch_id: int, weekday: Weekday) -> List[ShiftTemplate]:
        """ACTIVE templates of the branch that run on the given weekday"""
        if not self.directory.branch_exists(branch_id):
            raise BranchNotFound(branch_id)

        templates = (
            self.db.query(ShiftTemplate)
            .options(selectinload(ShiftTemplate.requirements))
            .filter(
                ShiftTemplate.branch_id == branch_id,
                ShiftTemplate.status == TemplateStatus.ACTIVE,
            )
            .order_by(ShiftTemplate.start_time, ShiftTemplate.id)
            .all()
        )
        # Weekdays live in a JSON column, so the weekday filter runs here
        return [t for t in templates if is_active_on(t, weekday)]

    def list_templates(self, branch_id: int, include_inactive: bool = False) -> List[ShiftTemplate]:
        if not self.directory.branch_exists(branch_id):
            raise BranchNotFound(branch_id)

        query = self.db.query(ShiftTemplate).filter(ShiftTemplate.branch_id == branch_id)
        if not include_inactive:
            query = query.filter(ShiftTemplate.status == TemplateStatus.ACTIVE)
        return query.order_by(ShiftTemplate.start_time, ShiftTemplate.id).all()

    def get_template(self, template_id: int) -> ShiftTemplate:
        template = self.db.query(ShiftTemplate).filter(ShiftTemplate.id == template_id).first()
        if not template:
            raise TemplateNotFound(template_id)
        return template

    def create_template(self, data: ShiftTemplateCreate) -> ShiftTemplate:
        if not self.directory.branch_exists(data.branch_id):
            raise BranchNotFound(data.branch_id)

        template = ShiftTemplate(
            branch_id=data.branch_id,
            name=data.name,
            description=data.description,
            start_time=data.start_time,
            end_time=data.end_time,
            active_weekdays=[w.value for w in data.active_weekdays],
            status=data.status,
            requirements=[
                ShiftRequirement(role_id=r.role_id, quantity=r.quantity)
                for r in data.requirements
            ],
        )
        self.db.add(template)
        self.db.commit()
        self.db.refresh(template)

        logger.info(f"Created shift template {template.id} '{template.name}' for branch {template.branch_id}")
        return template

    def update_template(self, template_id: int, data: ShiftTemplateUpdate) -> ShiftTemplate:
        """
        Update a template in place.

        Requirements are replaced as a whole. Occurrences already created keep
        their own requirement snapshot and are not touched.
        """
        template = self.get_template(template_id)
        update_data = data.model_dump(exclude_unset=True)

        requirements = update_data.pop("requirements", None)
        weekdays = update_data.pop("active_weekdays", None)

        for key, value in update_data.items():
            setattr(template, key, value)

        if weekdays is not None:
            template.active_weekdays = [Weekday(w).value for w in weekdays]

        if requirements is not None:
            template.requirements.clear()
            # Flush deletes before inserting so the (template, role) constraint holds
            self.db.flush()
            template.requirements.extend(
                ShiftRequirement(role_id=r["role_id"], quantity=r["quantity"])
                for r in requirements
            )

        self.db.commit()
        self.db.refresh(template)

        logger.info(f"Updated shift template {template_id}: {sorted(data.model_fields_set)}")
        return template

    def deactivate_template(self, template_id: int) -> ShiftTemplate:
        template = self.get_template(template_id)
        template.status = TemplateStatus.INACTIVE
        self.db.commit()
        self.db.refresh(template)

        logger.info(f"Deactivated shift template {template_id}")
        return template


def is_active_on(template: ShiftTemplate, weekday: Weekday) -> bool:
    return weekday.value in (template.active_weekdays or [])
