"""
Shared fixtures: the bundled mock data behind both repository implementations.
"""

import pytest

from facilityslots.adapters.database import create_db_engine, create_session_factory, init_db
from facilityslots.adapters.fixtures import load_fixture
from facilityslots.adapters.mock_repository import InMemoryBookingRepository
from facilityslots.adapters.sql_repository import SqlBookingRepository
from facilityslots.services.availability import AvailabilityService

TZ = "Europe/Berlin"


@pytest.fixture
def memory_repository() -> InMemoryBookingRepository:
    return InMemoryBookingRepository.from_file(timezone=TZ)


@pytest.fixture
def sql_repository():
    engine = create_db_engine("sqlite://")
    init_db(engine)
    repository = SqlBookingRepository(create_session_factory(engine), timezone=TZ)
    repository.seed(load_fixture(InMemoryBookingRepository.DEFAULT_DATA_FILE))
    yield repository
    engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def repository(request):
    """Every service test runs against both repository implementations."""
    return request.getfixturevalue(f"{request.param}_repository")


@pytest.fixture
def service(repository) -> AvailabilityService:
    return AvailabilityService(repository, timezone=TZ)
