from datetime import date
from typing import Dict, List, Optional
import logging

from sqlalchemy import and_
from sqlalchemy.orm import Session

from ..config.scheduling_config import SchedulingSettings, get_scheduling_settings
from ..enums.scheduling_enums import ScheduleLockStatus
from ..exceptions.scheduling_exceptions import (
    BranchNotFound,
    InvalidTransition,
    ScheduleLockNotFound,
    ScheduleLocked,
)
from ..models.scheduling_models import ScheduleLock
from ..schemas.scheduling_schemas import ScheduleLockCreate, ScheduleUnlockRequest
from ..utils.time_utils import iter_dates, utcnow
from .staff_directory import StaffDirectory, SqlStaffDirectory

logger = logging.getLogger(__name__)


class ScheduleLockService:
    """Locks freeze a branch's schedule for a date range against edits"""

    def __init__(
        self,
        db: Session,
        directory: Optional[StaffDirectory] = None,
        settings: Optional[SchedulingSettings] = None,
    ):
        self.db = db
        self.directory = directory or SqlStaffDirectory(db)
        self.settings = settings or get_scheduling_settings()

    def lock(self, data: ScheduleLockCreate) -> ScheduleLock:
        if not self.directory.branch_exists(data.branch_id):
            raise BranchNotFound(data.branch_id)

        schedule_lock = ScheduleLock(
            branch_id=data.branch_id,
            start_date=data.start_date,
            end_date=data.end_date,
            lock_status=ScheduleLockStatus.LOCKED,
            lock_reason=data.lock_reason,
            locked_by_id=data.locked_by_id,
            locked_at=utcnow(),
        )
        self.db.add(schedule_lock)
        self.db.commit()
        self.db.refresh(schedule_lock)

        logger.info(
            f"Locked schedule for branch {data.branch_id} "
            f"{data.start_date} - {data.end_date} (lock {schedule_lock.id})"
        )
        return schedule_lock

    def unlock(self, lock_id: int, data: ScheduleUnlockRequest) -> ScheduleLock:
        schedule_lock = self.get_lock(lock_id)
        if schedule_lock.lock_status != ScheduleLockStatus.LOCKED:
            raise InvalidTransition(
                f"Schedule lock {lock_id} is already unlocked",
                context={"lock_id": lock_id},
            )

        schedule_lock.lock_status = ScheduleLockStatus.UNLOCKED
        schedule_lock.unlocked_by_id = data.unlocked_by_id
        schedule_lock.unlocked_at = utcnow()
        schedule_lock.unlock_reason = data.unlock_reason
        self.db.commit()
        self.db.refresh(schedule_lock)

        logger.info(f"Unlocked schedule lock {lock_id}: {data.unlock_reason}")
        return schedule_lock

    def get_lock(self, lock_id: int) -> ScheduleLock:
        schedule_lock = self.db.query(ScheduleLock).filter(ScheduleLock.id == lock_id).first()
        if not schedule_lock:
            raise ScheduleLockNotFound(lock_id)
        return schedule_lock

    def get_active_lock(self, branch_id: int, target_date: date) -> Optional[ScheduleLock]:
        return (
            self.db.query(ScheduleLock)
            .filter(
                and_(
                    ScheduleLock.branch_id == branch_id,
                    ScheduleLock.lock_status == ScheduleLockStatus.LOCKED,
                    ScheduleLock.start_date <= target_date,
                    ScheduleLock.end_date >= target_date,
                )
            )
            .order_by(ScheduleLock.id)
            .first()
        )

    def is_locked(self, branch_id: int, target_date: date) -> bool:
        return self.get_active_lock(branch_id, target_date) is not None

    def locks_in_range(
        self, branch_id: int, start_date: date, end_date: date, active_only: bool = False
    ) -> List[ScheduleLock]:
        query = self.db.query(ScheduleLock).filter(
            and_(
                ScheduleLock.branch_id == branch_id,
                ScheduleLock.start_date <= end_date,
                ScheduleLock.end_date >= start_date,
            )
        )
        if active_only:
            query = query.filter(ScheduleLock.lock_status == ScheduleLockStatus.LOCKED)
        return query.order_by(ScheduleLock.start_date, ScheduleLock.id).all()

    def locked_dates(self, branch_id: int, start_date: date, end_date: date) -> Dict[date, int]:
        """Map of locked date -> lock id within the range, for batch pre-checks"""
        if not self.settings.enforce_schedule_locks:
            return {}

        locked = {}
        for schedule_lock in self.locks_in_range(branch_id, start_date, end_date, active_only=True):
            first = max(schedule_lock.start_date, start_date)
            last = min(schedule_lock.end_date, end_date)
            for locked_date in iter_dates(first, last):
                locked.setdefault(locked_date, schedule_lock.id)
        return locked

    def ensure_unlocked(self, branch_id: int, target_date: date) -> None:
        if not self.settings.enforce_schedule_locks:
            return
        schedule_lock = self.get_active_lock(branch_id, target_date)
        if schedule_lock:
            raise ScheduleLocked(branch_id, target_date, schedule_lock.id)
