"""
Read model of the branch/role/staff directory.

These tables are owned by the surrounding system; the scheduling core only
reads them through ``StaffDirectory`` and refers to rows by id.
"""

from sqlalchemy import Column, Integer, String, ForeignKey, Enum
from sqlalchemy.orm import relationship
from core.database import Base
from ..enums.scheduling_enums import DirectoryStatus


class Branch(Base):
    __tablename__ = "branches"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    status = Column(Enum(DirectoryStatus, native_enum=False, length=16), default=DirectoryStatus.ACTIVE, nullable=False)


class Role(Base):
    __tablename__ = "roles"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    hex_color = Column(String)

    staff_members = relationship("StaffMember", back_populates="role")


class StaffMember(Base):
    __tablename__ = "staff_members"
    id = Column(Integer, primary_key=True, index=True)
    branch_id = Column(Integer, ForeignKey("branches.id"), index=True)
    full_name = Column(String, nullable=False)
    email = Column(String, unique=True)
    role_id = Column(Integer, ForeignKey("roles.id"), nullable=False)
    status = Column(Enum(DirectoryStatus, native_enum=False, length=16), default=DirectoryStatus.ACTIVE, nullable=False)

    role = relationship("Role", back_populates="staff_members")
