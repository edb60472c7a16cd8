"""
Boundary to the branch/role/staff directory.

The scheduling core never owns directory data. It asks whether a branch
exists, what a staff member's primary role is and who holds a role at a
branch; every role comparison downstream is done on the integer role id
returned here. Inactive branches and staff are treated as unknown.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, List

from sqlalchemy.orm import Session

from ..enums.scheduling_enums import DirectoryStatus
from ..exceptions.scheduling_exceptions import StaffNotFound
from ..models.directory_models import Branch, StaffMember


class StaffDirectory(ABC):
    @abstractmethod
    def branch_exists(self, branch_id: int) -> bool:
        ...

    @abstractmethod
    def get_staff_primary_role(self, staff_id: int, include_inactive: bool = False) -> int:
        """Return the staff member's primary role id, raising StaffNotFound"""

    @abstractmethod
    def list_staff_with_role(self, branch_id: int, role_id: int) -> List[int]:
        """Ids of active staff at ``branch_id`` whose primary role is ``role_id``"""

    def get_staff_primary_roles(self, staff_ids: Iterable[int]) -> Dict[int, int]:
        """Primary role per staff id; unknown staff are left out"""
        roles = {}
        for staff_id in staff_ids:
            try:
                roles[staff_id] = self.get_staff_primary_role(staff_id)
            except StaffNotFound:
                continue
        return roles


class SqlStaffDirectory(StaffDirectory):
    """Directory lookups against the shared branch/staff tables; inactive rows are invisible"""

    def __init__(self, db: Session):
        self.db = db

    def branch_exists(self, branch_id: int) -> bool:
        return (
            self.db.query(Branch.id)
            .filter(Branch.id == branch_id, Branch.status == DirectoryStatus.ACTIVE)
            .first()
            is not None
        )

    def get_staff_primary_role(self, staff_id: int, include_inactive: bool = False) -> int:
        query = self.db.query(StaffMember.role_id).filter(StaffMember.id == staff_id)
        if not include_inactive:
            query = query.filter(StaffMember.status == DirectoryStatus.ACTIVE)
        row = query.first()
        if row is None:
            raise StaffNotFound(staff_id)
        return row.role_id

    def get_staff_primary_roles(self, staff_ids: Iterable[int]) -> Dict[int, int]:
        staff_ids = list(set(staff_ids))
        if not staff_ids:
            return {}
        rows = (
            self.db.query(StaffMember.id, StaffMember.role_id)
            .filter(
                StaffMember.id.in_(staff_ids),
                StaffMember.status == DirectoryStatus.ACTIVE,
            )
            .all()
        )
        return {row.id: row.role_id for row in rows}

    def list_staff_with_role(self, branch_id: int, role_id: int) -> List[int]:
        rows = (
            self.db.query(StaffMember.id)
            .filter(
                StaffMember.branch_id == branch_id,
                StaffMember.role_id == role_id,
                StaffMember.status == DirectoryStatus.ACTIVE,
            )
            .order_by(StaffMember.id)
            .all()
        )
        return [row.id for row in rows]
