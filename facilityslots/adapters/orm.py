"""
SQLAlchemy models for the booking store.

Timestamps are stored as naive UTC; the repository converts them to
timezone-aware pendulum instances on the way out.
"""

import uuid

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from ..domain.models import BookingStatus, BookingType

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String, nullable=False)
    settings = Column(JSON, nullable=True)

    locations = relationship("Location", back_populates="organization")


class Location(Base):
    __tablename__ = "locations"

    id = Column(String(36), primary_key=True, default=_new_id)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False)
    name = Column(String, nullable=False)
    settings = Column(JSON, nullable=True)

    organization = relationship("Organization", back_populates="locations")
    facilities = relationship("Facility", back_populates="location")


class Facility(Base):
    __tablename__ = "facilities"

    id = Column(String(36), primary_key=True, default=_new_id)
    location_id = Column(String(36), ForeignKey("locations.id"), nullable=False)
    name = Column(String, nullable=False)
    price = Column(Float, nullable=False, default=0.0)
    settings = Column(JSON, nullable=True)

    location = relationship("Location", back_populates="facilities")


class Class(Base):
    """A recurring activity; may or may not occupy a facility."""

    __tablename__ = "classes"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    instructor = Column(String, nullable=False)
    location_id = Column(String(36), ForeignKey("locations.id"), nullable=False)
    facility_id = Column(String(36), ForeignKey("facilities.id"), nullable=True)

    sessions = relationship("ClassSession", back_populates="parent_class")


class ClassSession(Base):
    __tablename__ = "class_sessions"

    id = Column(String(36), primary_key=True, default=_new_id)
    class_id = Column(String(36), ForeignKey("classes.id"), nullable=False, index=True)
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)

    parent_class = relationship("Class", back_populates="sessions")
    settings = relationship("ClassSessionSettings", uselist=False, back_populates="class_session")
    bookings = relationship("Booking", back_populates="class_session")


class ClassSessionSettings(Base):
    __tablename__ = "class_session_settings"

    id = Column(String(36), primary_key=True, default=_new_id)
    class_session_id = Column(String(36), ForeignKey("class_sessions.id"), nullable=False, unique=True)
    data = Column(JSON, nullable=False, default=dict)

    class_session = relationship("ClassSession", back_populates="settings")


class Booking(Base):
    """
    A facility booking or a class-session booking.

    Never deleted; cancellation is a status transition.
    """

    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_facility_window", "facility_id", "start_time", "end_time"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    facility_id = Column(String(36), ForeignKey("facilities.id"), nullable=True)
    class_session_id = Column(String(36), ForeignKey("class_sessions.id"), nullable=True, index=True)
    location_id = Column(String(36), ForeignKey("locations.id"), nullable=False)
    status = Column(String(20), nullable=False, default=BookingStatus.CONFIRMED.value, index=True)
    type = Column(String(20), nullable=False, default=BookingType.NORMAL.value)
    customer_name = Column(String, nullable=False, default="")
    customer_email = Column(String, nullable=True)
    customer_phone = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    person_count = Column(Integer, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    facility = relationship("Facility")
    class_session = relationship("ClassSession", back_populates="bookings")
