"""
Adapters layer - Booking store integrations (SQL database, in-memory fixtures).
"""

from .database import create_db_engine, create_session_factory, init_db
from .fixtures import load_fixture
from .mock_repository import InMemoryBookingRepository
from .sql_repository import SqlBookingRepository

__all__ = [
    "InMemoryBookingRepository",
    "SqlBookingRepository",
    "create_db_engine",
    "create_session_factory",
    "init_db",
    "load_fixture",
]
