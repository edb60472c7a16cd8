from collections import Counter
from typing import List, Optional
import logging

from sqlalchemy.orm import Session, selectinload

from ..enums.scheduling_enums import COUNTABLE_STATUSES
from ..exceptions.scheduling_exceptions import OccurrenceNotFound
from ..models.scheduling_models import ScheduledShift
from ..schemas.scheduling_schemas import FulfillmentResult, RoleFulfillment
from .staff_directory import StaffDirectory, SqlStaffDirectory

logger = logging.getLogger(__name__)


class FulfillmentService:
    """
    Assigned-versus-required headcount per role for a scheduled shift.

    Results are recomputed from the countable assignments on every call and
    nothing is written back, so repeated calls with no mutation in between
    return identical results.
    """

    def __init__(self, db: Session, directory: Optional[StaffDirectory] = None):
        self.db = db
        self.directory = directory or SqlStaffDirectory(db)

    def evaluate(self, occurrence_id: int) -> FulfillmentResult:
        occurrence = (
            self.db.query(ScheduledShift)
            .options(
                selectinload(ScheduledShift.requirements),
                selectinload(ScheduledShift.assignments),
            )
            .filter(ScheduledShift.id == occurrence_id)
            .first()
        )
        if not occurrence:
            raise OccurrenceNotFound(occurrence_id)
        return self.evaluate_occurrence(occurrence)

    def evaluate_occurrence(self, occurrence: ScheduledShift) -> FulfillmentResult:
        """Evaluate an already loaded occurrence"""
        counted = [a for a in occurrence.assignments if a.status in COUNTABLE_STATUSES]
        roles = self.directory.get_staff_primary_roles(a.staff_id for a in counted)

        assigned_by_role = Counter(
            roles[a.staff_id] for a in counted if a.staff_id in roles
        )

        per_role: List[RoleFulfillment] = []
        for requirement in sorted(occurrence.requirements, key=lambda r: r.role_id):
            assigned = assigned_by_role.get(requirement.role_id, 0)
            per_role.append(
                RoleFulfillment(
                    role_id=requirement.role_id,
                    required=requirement.quantity,
                    assigned=assigned,
                    shortfall=max(0, requirement.quantity - assigned),
                )
            )

        return FulfillmentResult(
            scheduled_shift_id=occurrence.id,
            per_role=per_role,
            is_fully_satisfied=all(r.shortfall == 0 for r in per_role),
        )
