"""
Database Models
SQLAlchemy ORM models for DoseReminder
"""

from sqlalchemy import Column, Integer, String, Boolean, Float, DateTime, ForeignKey, Text, Date, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
from enum import Enum as PyEnum

from database import Base
from config import TableNames


# ==================== ENUMS ====================

class DoseStatus(str, PyEnum):
    """Lifecycle state of a single scheduled dose"""
    PENDING = "pending"
    SENT = "sent"
    TAKEN = "taken"
    MISSED = "missed"


# Terminal (or notified) states eligible for retention cleanup
CLEANABLE_STATUSES = (DoseStatus.SENT.value, DoseStatus.TAKEN.value, DoseStatus.MISSED.value)


class NotificationChannel(str, PyEnum):
    """Delivery channels for reminders"""
    EMAIL = "email"


class NotificationOutcome(str, PyEnum):
    """Result recorded for a delivery attempt"""
    SENT = "sent"
    FAILED = "failed"


# ==================== MODELS ====================

class User(Base):
    """Owner of medications and notification settings"""
    __tablename__ = TableNames.USERS

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    medications = relationship("Medication", back_populates="user", cascade="all, delete-orphan")
    notification_config = relationship(
        "UserNotificationConfig", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )


class Medication(Base):
    """Medication with its recurrence rule and optional treatment duration"""
    __tablename__ = TableNames.MEDICATIONS

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey(f"{TableNames.USERS}.id", ondelete="CASCADE"), nullable=False)

    name = Column(String(255), nullable=False)
    dosage = Column(String(100))
    description = Column(Text)

    # Recurrence rule
    frequency_hours = Column(Float, nullable=False)
    start_time = Column(String(5), nullable=False)  # "HH:MM" in the operating timezone

    # Treatment duration; None means continuous
    duration_days = Column(Integer)
    started_at = Column(Date)

    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="medications")
    schedules = relationship(
        "DoseSchedule", back_populates="medication", cascade="all, delete-orphan", passive_deletes=True
    )
    notification_logs = relationship(
        "NotificationLog", back_populates="medication", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        Index("ix_medications_user_active", "user_id", "active"),
    )


class DoseSchedule(Base):
    """One concrete dose occurrence; scheduled_time is naive UTC"""
    __tablename__ = TableNames.SCHEDULES

    id = Column(Integer, primary_key=True, index=True)
    medication_id = Column(
        Integer, ForeignKey(f"{TableNames.MEDICATIONS}.id", ondelete="CASCADE"), nullable=False
    )

    scheduled_time = Column(DateTime, nullable=False)
    status = Column(String(20), default=DoseStatus.PENDING.value, nullable=False)
    taken_at = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    medication = relationship("Medication", back_populates="schedules")
    notification_logs = relationship(
        "NotificationLog", back_populates="schedule", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        UniqueConstraint("medication_id", "scheduled_time", name="uq_schedule_medication_time"),
        Index("ix_schedules_status_time", "status", "scheduled_time"),
    )


class NotificationLog(Base):
    """Append-only record of each delivery attempt"""
    __tablename__ = TableNames.NOTIFICATION_LOGS

    id = Column(Integer, primary_key=True, index=True)
    medication_id = Column(
        Integer, ForeignKey(f"{TableNames.MEDICATIONS}.id", ondelete="CASCADE"), nullable=False
    )
    schedule_id = Column(
        Integer, ForeignKey(f"{TableNames.SCHEDULES}.id", ondelete="CASCADE"), nullable=False
    )

    channel = Column(String(20), default=NotificationChannel.EMAIL.value, nullable=False)
    status = Column(String(20), nullable=False)
    message = Column(Text)
    sent_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    medication = relationship("Medication", back_populates="notification_logs")
    schedule = relationship("DoseSchedule", back_populates="notification_logs")

    __table_args__ = (
        Index("ix_notification_logs_sent_at", "sent_at"),
    )


class UserNotificationConfig(Base):
    """Per-user delivery settings: gateway address and outbound SMTP credentials"""
    __tablename__ = TableNames.NOTIFICATION_CONFIGS

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(
        Integer, ForeignKey(f"{TableNames.USERS}.id", ondelete="CASCADE"), unique=True, nullable=False
    )

    # Push gateway destination (e.g. a Pushover email address)
    pushover_email = Column(String(255))

    smtp_host = Column(String(255))
    smtp_port = Column(Integer)
    smtp_secure = Column(Boolean, default=False, nullable=False)
    smtp_user = Column(String(255))
    smtp_password = Column(String(255))

    notifications_enabled = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="notification_config")

    @property
    def has_valid_smtp_config(self) -> bool:
        return bool(self.smtp_host and self.smtp_port and self.smtp_user and self.smtp_password)

    @property
    def has_pushover_email(self) -> bool:
        return bool(self.pushover_email)
