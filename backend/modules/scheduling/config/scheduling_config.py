# backend/modules/scheduling/config/scheduling_config.py

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulingSettings(BaseSettings):
    """
    Limits and switches for the scheduling core.

    Every value can be overridden with a ``SCHEDULING_`` prefixed environment
    variable, e.g. ``SCHEDULING_MAX_DATE_RANGE_DAYS=31``.
    """

    model_config = SettingsConfigDict(
        env_prefix="SCHEDULING_", env_file=".env", case_sensitive=False, extra="ignore"
    )

    # Longest span accepted by range queries and batch operations
    max_date_range_days: int = Field(93, ge=1)

    # Most target weeks a single copy-week call may write to
    max_copy_target_weeks: int = Field(12, ge=1)

    # Most staff members in one bulk-assign call
    max_bulk_staff: int = Field(200, ge=1)

    # 0 = Monday ... 6 = Sunday
    week_start_weekday: int = Field(0, ge=0, le=6)

    # Reject schedule edits on dates covered by an active schedule lock
    enforce_schedule_locks: bool = True


scheduling_settings = SchedulingSettings()


def get_scheduling_settings() -> SchedulingSettings:
    """Get the scheduling configuration."""
    return scheduling_settings
