"""
SQLAlchemy tables: businesses, call_records, transcript_entries, leads.

JSON columns are always reassigned, never mutated in place, so changes are
picked up without MutableDict/MutableList wrappers.
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from .database import Base


def utcnow() -> datetime:
    return datetime.utcnow()


class Business(Base):
    __tablename__ = "businesses"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    business_name = Column(String(200), nullable=False)
    owner_email = Column(String(255))
    twilio_phone_number = Column(String(32), unique=True, index=True, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    custom_greeting = Column(Text)
    custom_instructions = Column(Text)
    timezone = Column(String(64), nullable=False, default="America/New_York")

    faqs = Column(JSON)  # [{question, answer}]
    services = Column(JSON)  # [{name, description, price}]
    business_hours = Column(JSON)  # [{day, open, close, is_closed}]
    notification_settings = Column(JSON)  # {primary_email, cc_emails, enable_email}

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class CallRecord(Base):
    __tablename__ = "call_records"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    call_sid = Column(String(64), unique=True, index=True, nullable=False)
    account_sid = Column(String(64))
    business_id = Column(Integer, ForeignKey("businesses.id"), index=True, nullable=False)

    from_number = Column(String(32))
    to_number = Column(String(32))
    direction = Column(String(16), nullable=False, default="inbound")

    # Lifecycle: initiated, ringing, in-progress, completed, failed, busy, no-answer, canceled
    status = Column(String(32), index=True, nullable=False, default="initiated")
    gateway_status = Column(String(32))  # last status reported by Twilio

    start_time = Column(DateTime, default=utcnow)
    end_time = Column(DateTime)
    duration = Column(Integer)

    conversation_summary = Column(Text)
    lead_captured = Column(Boolean, nullable=False, default=False)
    lead_id = Column(Integer, index=True)  # leads.id once captured
    outcome = Column(String(32))

    recording_url = Column(String(500))
    recording_sid = Column(String(64))

    caller_metadata = Column(JSON)  # {city, state, country, caller_name, is_after_hours}

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def is_finalized(self) -> bool:
        return self.status == "completed" and bool(self.conversation_summary)


class TranscriptEntry(Base):
    __tablename__ = "transcript_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    call_record_id = Column(Integer, ForeignKey("call_records.id", ondelete="CASCADE"), index=True, nullable=False)
    position = Column(Integer, nullable=False)
    role = Column(String(16), nullable=False)  # assistant | user
    content = Column(Text, nullable=False)
    timestamp = Column(DateTime, default=utcnow)


class Lead(Base):
    __tablename__ = "leads"
    __table_args__ = (
        UniqueConstraint("business_id", "call_sid", name="uq_leads_business_call"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    business_id = Column(Integer, ForeignKey("businesses.id"), index=True, nullable=False)
    call_sid = Column(String(64), index=True, nullable=False)  # call that created the lead
    call_record_id = Column(Integer, ForeignKey("call_records.id"))
    call_sids = Column(JSON)  # every call linked to this lead

    phone = Column(String(32), nullable=False)
    phone_normalized = Column(String(16), index=True)  # last 10 digits
    name = Column(String(200), nullable=False, default="Unknown")
    email = Column(String(255))

    source = Column(String(32), nullable=False, default="phone_call")
    status = Column(String(32), nullable=False, default="new")
    quality = Column(String(16), nullable=False, default="unknown")  # cold < unknown < warm < hot

    interested_in = Column(Text)
    reason_for_calling = Column(Text)
    services = Column(JSON)
    questions = Column(JSON)
    conversation_summary = Column(Text)
    transcript = Column(Text)

    callback_requested = Column(Boolean, nullable=False, default=False)
    appointment_requested = Column(Boolean, nullable=False, default=False)
    appointment_details = Column(Text)

    notes = Column(JSON)  # [{content, created_by, created_at}]
    ai_summary = Column(JSON)  # {text, status, model, generated_at, error}
    notification = Column(JSON)  # {status, sent_at, error, recipients}
    caller_metadata = Column(JSON)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
