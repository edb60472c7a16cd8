# backend/modules/scheduling/tests/conftest.py

from datetime import time
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from core.database import Base, build_engine, get_db
from modules.scheduling import models  # noqa: F401
from modules.scheduling.config.scheduling_config import SchedulingSettings
from modules.scheduling.enums.scheduling_enums import Weekday
from modules.scheduling.services.assignment_service import AssignmentService
from modules.scheduling.services.bulk_operations_service import BulkOperationsService
from modules.scheduling.services.conflict_service import ConflictService
from modules.scheduling.services.fulfillment_service import FulfillmentService
from modules.scheduling.services.leave_reconciliation_service import LeaveReconciliationService
from modules.scheduling.services.occurrence_service import OccurrenceService
from modules.scheduling.services.schedule_lock_service import ScheduleLockService
from modules.scheduling.services.schedule_view_service import ScheduleViewService
from modules.scheduling.services.shift_template_service import ShiftTemplateService
from modules.scheduling.services.staff_directory import SqlStaffDirectory

from modules.scheduling.tests.factories import (
    COOK,
    HOST,
    WAITER,
    BranchFactory,
    RoleFactory,
    StaffMemberFactory,
    ShiftTemplateFactory,
)

# In-memory database shared by every connection through a StaticPool
engine = build_engine("sqlite://")
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session() -> Generator[Session, None, None]:
    """Fresh schema and seeded directory for every test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()

    session.add_all(
        [
            BranchFactory(id=1, name="Downtown").create(),
            BranchFactory(id=2, name="Harbor").create(),
            RoleFactory(id=WAITER, name="Waiter").create(),
            RoleFactory(id=COOK, name="Cook", hex_color="#ff7f0e").create(),
            RoleFactory(id=HOST, name="Host", hex_color="#2ca02c").create(),
        ]
    )
    session.flush()
    # Staff 1-3 waiters, 4-5 cooks, 6 host at Downtown; 7 waiter at Harbor
    session.add_all(StaffMemberFactory.create_batch(3, base_id=1, role_id=WAITER))
    session.add_all(StaffMemberFactory.create_batch(2, base_id=4, role_id=COOK))
    session.add(StaffMemberFactory(id=6, full_name="Hannah Host", role_id=HOST).create())
    session.add(StaffMemberFactory(id=7, full_name="Harbor Waiter", branch_id=2).create())
    session.commit()

    yield session

    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def settings() -> SchedulingSettings:
    return SchedulingSettings()


@pytest.fixture
def directory(db_session):
    return SqlStaffDirectory(db_session)


@pytest.fixture
def lock_service(db_session, directory, settings) -> ScheduleLockService:
    return ScheduleLockService(db_session, directory, settings)


@pytest.fixture
def template_service(db_session, directory) -> ShiftTemplateService:
    return ShiftTemplateService(db_session, directory)


@pytest.fixture
def occurrence_service(db_session, directory, settings, lock_service) -> OccurrenceService:
    return OccurrenceService(db_session, directory, settings, lock_service)


@pytest.fixture
def conflict_service(db_session) -> ConflictService:
    return ConflictService(db_session)


@pytest.fixture
def assignment_service(
    db_session, directory, settings, lock_service, conflict_service
) -> AssignmentService:
    return AssignmentService(db_session, directory, settings, lock_service, conflict_service)


@pytest.fixture
def fulfillment_service(db_session, directory) -> FulfillmentService:
    return FulfillmentService(db_session, directory)


@pytest.fixture
def bulk_service(db_session, directory, settings) -> BulkOperationsService:
    return BulkOperationsService(db_session, directory, settings)


@pytest.fixture
def leave_service(db_session, assignment_service) -> LeaveReconciliationService:
    return LeaveReconciliationService(db_session, assignment_service)


@pytest.fixture
def view_service(db_session, directory, settings) -> ScheduleViewService:
    return ScheduleViewService(db_session, directory, settings)


@pytest.fixture
def morning_template(template_service):
    """Morning 08:00-16:00, MON-FRI, two waiters"""
    return template_service.create_template(ShiftTemplateFactory().build())


@pytest.fixture
def evening_template(template_service):
    """Evening 14:00-22:00, every day, one waiter and one cook"""
    return template_service.create_template(
        ShiftTemplateFactory(
            name="Evening",
            start_time=time(14, 0),
            end_time=time(22, 0),
            active_weekdays=list(Weekday),
            requirements={WAITER: 1, COOK: 1},
        ).build()
    )


@pytest.fixture
def override_get_db(db_session: Session):
    """Override the get_db dependency for testing."""

    def _override_get_db():
        yield db_session

    return _override_get_db


@pytest.fixture
def client(override_get_db):
    """Test client against the application with the test session injected."""
    from app.main import app

    app.dependency_overrides[get_db] = override_get_db
    # Not used as a context manager so startup checks do not touch the real database
    test_client = TestClient(app)
    yield test_client
    app.dependency_overrides.clear()
