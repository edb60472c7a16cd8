from enum import Enum


class Weekday(str, Enum):
    MON = "MON"
    TUE = "TUE"
    WED = "WED"
    THU = "THU"
    FRI = "FRI"
    SAT = "SAT"
    SUN = "SUN"

    @classmethod
    def from_date(cls, value) -> "Weekday":
        return WEEKDAY_ORDER[value.weekday()]


WEEKDAY_ORDER = [
    Weekday.MON,
    Weekday.TUE,
    Weekday.WED,
    Weekday.THU,
    Weekday.FRI,
    Weekday.SAT,
    Weekday.SUN,
]


class TemplateStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class AssignmentStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING = "PENDING"
    PUBLISHED = "PUBLISHED"
    CONFLICTED = "CONFLICTED"
    REQUEST_CHANGE = "REQUEST_CHANGE"
    APPROVED_LEAVE_VALID = "APPROVED_LEAVE_VALID"
    APPROVED_LEAVE_EXCEEDED = "APPROVED_LEAVE_EXCEEDED"


# Statuses that count toward staffing fulfillment
COUNTABLE_STATUSES = frozenset(
    {
        AssignmentStatus.DRAFT,
        AssignmentStatus.PENDING,
        AssignmentStatus.PUBLISHED,
        AssignmentStatus.APPROVED_LEAVE_VALID,
    }
)

# Statuses an assignment is compared against when looking for overlaps.
# CONFLICTED entries stay visible so repeated overlapping requests are all flagged.
CONFLICT_PEER_STATUSES = COUNTABLE_STATUSES | {AssignmentStatus.CONFLICTED}

PUBLISHABLE_STATUSES = frozenset({AssignmentStatus.DRAFT, AssignmentStatus.PENDING})

LEAVE_STATUSES = frozenset(
    {AssignmentStatus.APPROVED_LEAVE_VALID, AssignmentStatus.APPROVED_LEAVE_EXCEEDED}
)


class ScheduleLockStatus(str, Enum):
    LOCKED = "LOCKED"
    UNLOCKED = "UNLOCKED"


class DirectoryStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
