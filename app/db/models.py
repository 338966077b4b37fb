"""Database models."""
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Call(Base):
    """Call metadata and the caller details captured during it."""

    __tablename__ = "calls"

    id = Column(Integer, primary_key=True, index=True)
    call_sid = Column(String, unique=True, index=True, nullable=False)
    stream_sid = Column(String, nullable=True)
    phone_number = Column(String, index=True, nullable=True)
    caller_name = Column(String, nullable=True)
    started_at = Column(DateTime, default=utcnow, nullable=False)
    ended_at = Column(DateTime, nullable=True)
    status = Column(String, default="in_progress", nullable=False)  # in_progress, completed, failed


class Appointment(Base):
    """Booked appointment slot."""

    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)
    caller_name = Column(String, nullable=True)
    phone_number = Column(String, nullable=True)
    appointment_time = Column(DateTime, unique=True, index=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
