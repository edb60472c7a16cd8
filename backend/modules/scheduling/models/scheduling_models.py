from sqlalchemy import (
    Column, Integer, String, ForeignKey, Date, DateTime, Enum, Time, JSON, Text,
    UniqueConstraint, CheckConstraint, Index,
)
from sqlalchemy.orm import relationship
from core.database import Base
from core.mixins import TimestampMixin
from ..enums.scheduling_enums import AssignmentStatus, TemplateStatus, ScheduleLockStatus


def _enum_column(enum_cls):
    return Enum(
        enum_cls,
        native_enum=False,
        length=32,
        values_callable=lambda obj: [e.value for e in obj],
    )


class ShiftTemplate(TimestampMixin, Base):
    __tablename__ = "shift_templates"

    id = Column(Integer, primary_key=True, index=True)
    branch_id = Column(Integer, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text)

    # Time pattern; end may be earlier than start for overnight shifts
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    # List of Weekday values
    active_weekdays = Column(JSON, nullable=False, default=list)

    status = Column(_enum_column(TemplateStatus), default=TemplateStatus.ACTIVE, nullable=False)

    requirements = relationship(
        "ShiftRequirement",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="ShiftRequirement.role_id",
    )
    occurrences = relationship("ScheduledShift", back_populates="template")


class ShiftRequirement(Base):
    __tablename__ = "shift_requirements"

    id = Column(Integer, primary_key=True, index=True)
    template_id = Column(Integer, ForeignKey("shift_templates.id", ondelete="CASCADE"), nullable=False)
    role_id = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False)

    template = relationship("ShiftTemplate", back_populates="requirements")

    __table_args__ = (
        UniqueConstraint("template_id", "role_id", name="uq_shift_requirement_role"),
        CheckConstraint("quantity > 0", name="check_shift_requirement_quantity"),
    )


class ScheduledShift(TimestampMixin, Base):
    """A template (or ad hoc shift) materialized on one branch date"""

    __tablename__ = "scheduled_shifts"

    id = Column(Integer, primary_key=True, index=True)
    template_id = Column(Integer, ForeignKey("shift_templates.id"), nullable=True)
    branch_id = Column(Integer, nullable=False)
    date = Column(Date, nullable=False)

    name = Column(String(100), nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    created_by_id = Column(Integer)

    template = relationship("ShiftTemplate", back_populates="occurrences")
    requirements = relationship(
        "ScheduledShiftRequirement",
        back_populates="scheduled_shift",
        cascade="all, delete-orphan",
        order_by="ScheduledShiftRequirement.role_id",
    )
    assignments = relationship(
        "StaffShift",
        back_populates="scheduled_shift",
        cascade="all, delete-orphan",
        order_by="StaffShift.id",
    )

    __table_args__ = (
        UniqueConstraint("template_id", "branch_id", "date", name="uq_scheduled_shift_template_branch_date"),
        Index("ix_scheduled_shifts_branch_date", "branch_id", "date"),
    )


class ScheduledShiftRequirement(Base):
    """Requirement snapshot copied from the template when the occurrence is created"""

    __tablename__ = "scheduled_shift_requirements"

    id = Column(Integer, primary_key=True, index=True)
    scheduled_shift_id = Column(Integer, ForeignKey("scheduled_shifts.id", ondelete="CASCADE"), nullable=False)
    role_id = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False)

    scheduled_shift = relationship("ScheduledShift", back_populates="requirements")

    __table_args__ = (
        UniqueConstraint("scheduled_shift_id", "role_id", name="uq_scheduled_shift_requirement_role"),
        CheckConstraint("quantity > 0", name="check_scheduled_shift_requirement_quantity"),
    )


class StaffShift(TimestampMixin, Base):
    """A staff member's assignment to a scheduled shift"""

    __tablename__ = "staff_shifts"

    id = Column(Integer, primary_key=True, index=True)
    scheduled_shift_id = Column(Integer, ForeignKey("scheduled_shifts.id", ondelete="CASCADE"), nullable=False)
    staff_id = Column(Integer, nullable=False, index=True)
    note = Column(Text)

    status = Column(_enum_column(AssignmentStatus), default=AssignmentStatus.DRAFT, nullable=False)
    status_changed_at = Column(DateTime)
    published_at = Column(DateTime)

    # Staff response to a published assignment
    change_reason = Column(Text)
    responded_at = Column(DateTime)

    created_by_id = Column(Integer)

    scheduled_shift = relationship("ScheduledShift", back_populates="assignments")

    __table_args__ = (
        UniqueConstraint("scheduled_shift_id", "staff_id", name="uq_staff_shift_occurrence_staff"),
    )


class ScheduleLock(TimestampMixin, Base):
    __tablename__ = "schedule_locks"

    id = Column(Integer, primary_key=True, index=True)
    branch_id = Column(Integer, nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)

    lock_status = Column(_enum_column(ScheduleLockStatus), default=ScheduleLockStatus.LOCKED, nullable=False)
    lock_reason = Column(Text)
    locked_by_id = Column(Integer)
    locked_at = Column(DateTime)

    unlocked_by_id = Column(Integer)
    unlocked_at = Column(DateTime)
    unlock_reason = Column(Text)

    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="check_schedule_lock_dates"),
    )


class SchedulePublication(Base):
    __tablename__ = "schedule_publications"

    id = Column(Integer, primary_key=True, index=True)
    branch_id = Column(Integer, nullable=False, index=True)

    # Period
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)

    published_by_id = Column(Integer)
    published_at = Column(DateTime, nullable=False)

    # Statistics
    total_assignments = Column(Integer, nullable=False, default=0)
    published_count = Column(Integer, nullable=False, default=0)
    conflicted_count = Column(Integer, nullable=False, default=0)
