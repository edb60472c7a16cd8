"""Custom exceptions for scheduling operations"""

from datetime import date
from typing import Any, Dict, Optional

from core.exceptions import DomainError


class SchedulingException(DomainError):
    """Base exception for scheduling operations"""

    error_code = "SCHEDULING_ERROR"


class NotFound(SchedulingException):
    """Raised when a referenced scheduling entity does not exist"""

    status_code = 404
    error_code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: Any, **context):
        super().__init__(
            message=f"{entity} with ID {entity_id} not found",
            context={f"{entity.lower().replace(' ', '_')}_id": entity_id, **context},
        )


class BranchNotFound(NotFound):
    def __init__(self, branch_id: int):
        super().__init__("Branch", branch_id)


class TemplateNotFound(NotFound):
    def __init__(self, template_id: int):
        super().__init__("Template", template_id)


class OccurrenceNotFound(NotFound):
    def __init__(self, occurrence_id: int):
        super().__init__("Occurrence", occurrence_id)


class AssignmentNotFound(NotFound):
    def __init__(self, assignment_id: int):
        super().__init__("Assignment", assignment_id)


class StaffNotFound(NotFound):
    def __init__(self, staff_id: int):
        super().__init__("Staff", staff_id)


class ScheduleLockNotFound(NotFound):
    def __init__(self, lock_id: int):
        super().__init__("Schedule lock", lock_id)


class DuplicateOccurrence(SchedulingException):
    """Raised when (template, branch, date) is already scheduled"""

    status_code = 409
    error_code = "DUPLICATE_OCCURRENCE"

    def __init__(self, template_id: Optional[int], branch_id: int, shift_date: date):
        super().__init__(
            message=(
                f"Template {template_id} is already scheduled for branch "
                f"{branch_id} on {shift_date.isoformat()}"
            ),
            context={"template_id": template_id, "branch_id": branch_id, "date": shift_date},
        )


class DuplicateAssignment(SchedulingException):
    """Raised when a staff member is assigned to the same occurrence twice"""

    status_code = 409
    error_code = "DUPLICATE_ASSIGNMENT"

    def __init__(self, occurrence_id: int, staff_id: int, shift_date: Optional[date] = None):
        super().__init__(
            message=f"Staff {staff_id} is already assigned to occurrence {occurrence_id}",
            context={"occurrence_id": occurrence_id, "staff_id": staff_id, "date": shift_date},
        )


class InvalidTransition(SchedulingException):
    """Raised when a status change or delete is not allowed from the current status"""

    status_code = 409
    error_code = "INVALID_TRANSITION"

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, context=context)


class ConflictDetected(SchedulingException):
    """Raised when an operation requires a conflict-free time window"""

    status_code = 409
    error_code = "CONFLICT_DETECTED"

    def __init__(self, staff_id: int, shift_date: date, conflicting_assignment_ids=None):
        super().__init__(
            message=(
                f"Staff {staff_id} already has an overlapping shift on "
                f"{shift_date.isoformat()}"
            ),
            context={
                "staff_id": staff_id,
                "date": shift_date,
                "conflicting_assignment_ids": list(conflicting_assignment_ids or []),
            },
        )


class TemplateNotSchedulable(SchedulingException):
    """Raised when a template is inactive or not active on the requested weekday"""

    status_code = 422
    error_code = "TEMPLATE_NOT_SCHEDULABLE"

    def __init__(self, template_id: int, shift_date: date, reason: str):
        super().__init__(
            message=f"Template {template_id} cannot be scheduled on {shift_date.isoformat()}: {reason}",
            context={"template_id": template_id, "date": shift_date},
        )


class ScheduleLocked(SchedulingException):
    """Raised when a schedule edit targets a locked branch date"""

    status_code = 423
    error_code = "SCHEDULE_LOCKED"

    def __init__(self, branch_id: int, shift_date: date, lock_id: int):
        super().__init__(
            message=f"Schedule for branch {branch_id} is locked on {shift_date.isoformat()}",
            context={"branch_id": branch_id, "date": shift_date, "lock_id": lock_id},
        )


class ValidationFailed(SchedulingException):
    """Raised when request limits are violated before any work starts"""

    status_code = 400
    error_code = "VALIDATION_FAILED"

    def __init__(self, message: str, **context):
        super().__init__(message=message, context=context)


class NotAssignee(SchedulingException):
    """Raised when a staff member acts on an assignment that is not theirs"""

    status_code = 403
    error_code = "NOT_ASSIGNEE"

    def __init__(self, assignment_id: int, staff_id: int):
        super().__init__(
            message=f"Assignment {assignment_id} does not belong to staff {staff_id}",
            context={"assignment_id": assignment_id, "staff_id": staff_id},
        )
