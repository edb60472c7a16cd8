from .directory_models import Branch, Role, StaffMember
from .scheduling_models import (
    ShiftTemplate,
    ShiftRequirement,
    ScheduledShift,
    ScheduledShiftRequirement,
    StaffShift,
    ScheduleLock,
    SchedulePublication,
)

__all__ = [
    "Branch",
    "Role",
    "StaffMember",
    "ShiftTemplate",
    "ShiftRequirement",
    "ScheduledShift",
    "ScheduledShiftRequirement",
    "StaffShift",
    "ScheduleLock",
    "SchedulePublication",
]
