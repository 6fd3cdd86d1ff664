"""
Repositories for businesses, call records and leads.

Each method opens its own short-lived session. Returned ORM objects are
detached snapshots; write through the repository, not by mutating them.

Idempotency lives here:
- CallRecordRepository.create_or_get tolerates voice webhook retries.
- CallRecordRepository.finalize is a conditional UPDATE; only the first
  caller sees True.
- LeadRepository.insert_if_absent is keyed by (business_id, call_sid) and
  backed by a unique constraint.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Generic, List, Optional, Tuple, Type, TypeVar, Union

import phonenumbers
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError

from .database import Base, Database
from .db_models import Business, CallRecord, Lead, TranscriptEntry, utcnow
from .models import TERMINAL_CALL_STATUSES, BusinessProfile

logger = logging.getLogger(__name__)

ModelType = TypeVar("ModelType", bound=Base)


def normalize_e164(number: Optional[str], region: str = "US") -> Optional[str]:
    """Normalize a gateway phone number to E.164, or None if unparseable."""
    if not number:
        return None
    try:
        parsed = phonenumbers.parse(number.strip(), region)
    except phonenumbers.NumberParseException:
        return None
    if not phonenumbers.is_possible_number(parsed):
        return None
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


class BaseRepository(Generic[ModelType]):
    """Common get/update operations."""

    model: Type[ModelType]

    def __init__(self, db: Database):
        self.db = db

    def get(self, id: int) -> Optional[ModelType]:
        with self.db.session() as s:
            return s.get(self.model, id)

    def update(self, id: int, **fields: Any) -> Optional[ModelType]:
        with self.db.session() as s:
            instance = s.get(self.model, id)
            if instance is None:
                return None
            for key, value in fields.items():
                if hasattr(instance, key):
                    setattr(instance, key, value)
            s.flush()
            return instance


# =============================================================================
# Businesses
# =============================================================================


class BusinessRepository(BaseRepository[Business]):
    model = Business

    def get_by_phone_number(self, number: str) -> Optional[Business]:
        candidates = {number.strip()}
        normalized = normalize_e164(number)
        if normalized:
            candidates.add(normalized)
        with self.db.session() as s:
            return s.execute(
                select(Business).where(Business.twilio_phone_number.in_(candidates))
            ).scalars().first()

    def upsert(self, profile: BusinessProfile) -> Business:
        """Create or replace a business keyed by its Twilio number."""
        number = normalize_e164(profile.twilio_phone_number) or profile.twilio_phone_number
        values = {
            "business_name": profile.business_name,
            "owner_email": profile.owner_email,
            "twilio_phone_number": number,
            "is_active": profile.is_active,
            "custom_greeting": profile.custom_greeting,
            "custom_instructions": profile.custom_instructions,
            "timezone": profile.timezone,
            "faqs": [f.model_dump() for f in profile.faqs],
            "services": [sv.model_dump() for sv in profile.services],
            "business_hours": [h.model_dump() for h in profile.business_hours],
            "notification_settings": profile.notification_settings.model_dump(),
        }
        with self.db.session() as s:
            business = s.execute(
                select(Business).where(Business.twilio_phone_number == number)
            ).scalars().first()
            if business is None:
                business = Business(**values)
                s.add(business)
            else:
                for key, value in values.items():
                    setattr(business, key, value)
            s.flush()
            return business

    @staticmethod
    def to_profile(business: Business) -> BusinessProfile:
        return BusinessProfile(
            id=business.id,
            business_name=business.business_name,
            owner_email=business.owner_email,
            twilio_phone_number=business.twilio_phone_number,
            is_active=business.is_active,
            custom_greeting=business.custom_greeting,
            custom_instructions=business.custom_instructions,
            faqs=business.faqs or [],
            services=business.services or [],
            business_hours=business.business_hours or [],
            timezone=business.timezone or "America/New_York",
            notification_settings=business.notification_settings or {},
        )

    def load_profiles(self, path: Union[str, Path]) -> int:
        """Import a JSON list of business profiles. Returns the count loaded."""
        data = json.loads(Path(path).read_text())
        if isinstance(data, dict):
            data = data.get("businesses", [])
        count = 0
        for raw in data:
            profile = BusinessProfile.model_validate(raw)
            business = self.upsert(profile)
            logger.info(f"Loaded business {business.business_name!r} on {business.twilio_phone_number}")
            count += 1
        return count


# =============================================================================
# Call records
# =============================================================================


class CallRecordRepository(BaseRepository[CallRecord]):
    model = CallRecord

    def get_by_sid(self, call_sid: str) -> Optional[CallRecord]:
        with self.db.session() as s:
            return s.execute(
                select(CallRecord).where(CallRecord.call_sid == call_sid)
            ).scalars().first()

    def create_or_get(
        self,
        call_sid: str,
        business_id: int,
        from_number: Optional[str] = None,
        to_number: Optional[str] = None,
        account_sid: Optional[str] = None,
        caller_metadata: Optional[Dict[str, Any]] = None,
        status: str = "in-progress",
    ) -> Tuple[CallRecord, bool]:
        """Insert the record for a new call. Returns (record, created)."""
        existing = self.get_by_sid(call_sid)
        if existing is not None:
            return existing, False

        record = CallRecord(
            call_sid=call_sid,
            business_id=business_id,
            from_number=from_number,
            to_number=to_number,
            account_sid=account_sid,
            direction="inbound",
            status=status,
            gateway_status=status,
            start_time=utcnow(),
            caller_metadata=caller_metadata or {},
        )
        try:
            with self.db.session() as s:
                s.add(record)
            return record, True
        except IntegrityError:
            logger.info(f"CallRecord for {call_sid} created concurrently, reusing it")
            existing = self.get_by_sid(call_sid)
            if existing is None:
                raise
            return existing, False

    def append_transcript(self, call_record_id: int, entries: List[Dict[str, str]]) -> int:
        """Append entries after the current last position. Returns rows added."""
        if not entries:
            return 0
        with self.db.session() as s:
            last = s.execute(
                select(func.max(TranscriptEntry.position)).where(
                    TranscriptEntry.call_record_id == call_record_id
                )
            ).scalar()
            position = 0 if last is None else last + 1
            for entry in entries:
                s.add(
                    TranscriptEntry(
                        call_record_id=call_record_id,
                        position=position,
                        role=entry["role"],
                        content=entry["content"],
                        timestamp=utcnow(),
                    )
                )
                position += 1
        return len(entries)

    def get_transcript(self, call_record_id: int) -> List[TranscriptEntry]:
        with self.db.session() as s:
            return list(
                s.execute(
                    select(TranscriptEntry)
                    .where(TranscriptEntry.call_record_id == call_record_id)
                    .order_by(TranscriptEntry.position)
                ).scalars().all()
            )

    def update_status(self, call_sid: str, status: str, duration: Optional[int] = None) -> bool:
        """Record a gateway status report.

        Terminal statuses only touch gateway_status/duration; moving the
        record to completed is the completion pipeline's job. A completed
        record never moves back.
        """
        values: Dict[str, Any] = {"gateway_status": status, "updated_at": utcnow()}
        if duration is not None:
            values["duration"] = duration
        if status not in TERMINAL_CALL_STATUSES:
            values["status"] = status

        with self.db.session() as s:
            result = s.execute(
                update(CallRecord)
                .where(CallRecord.call_sid == call_sid)
                .where(CallRecord.status != "completed")
                .values(**values)
            )
            if result.rowcount == 0 and duration is not None:
                # Already completed: still keep the reported duration
                result = s.execute(
                    update(CallRecord)
                    .where(CallRecord.call_sid == call_sid)
                    .values(gateway_status=status, duration=duration)
                )
            return result.rowcount > 0

    def set_recording(self, call_sid: str, recording_url: str, recording_sid: Optional[str] = None) -> bool:
        with self.db.session() as s:
            result = s.execute(
                update(CallRecord)
                .where(CallRecord.call_sid == call_sid)
                .values(recording_url=recording_url, recording_sid=recording_sid, updated_at=utcnow())
            )
            return result.rowcount > 0

    def mark_lead_captured(self, call_sid: str, lead_id: int) -> bool:
        with self.db.session() as s:
            result = s.execute(
                update(CallRecord)
                .where(CallRecord.call_sid == call_sid)
                .values(lead_captured=True, lead_id=lead_id, outcome="lead_captured", updated_at=utcnow())
            )
            return result.rowcount > 0

    def finalize(
        self,
        call_sid: str,
        summary: str,
        duration: Optional[int] = None,
        end_time: Optional[datetime] = None,
        outcome: Optional[str] = None,
    ) -> bool:
        """Move the record to completed exactly once.

        Conditional UPDATE guarded on "not already finalized". Returns True
        only for the attempt that performed the transition.
        """
        end_time = end_time or utcnow()
        values: Dict[str, Any] = {
            "status": "completed",
            "conversation_summary": summary,
            "end_time": end_time,
            "updated_at": end_time,
        }
        if duration is not None:
            values["duration"] = duration
        if outcome is not None:
            values["outcome"] = outcome

        with self.db.session() as s:
            result = s.execute(
                update(CallRecord)
                .where(CallRecord.call_sid == call_sid)
                .where(
                    or_(
                        CallRecord.status != "completed",
                        CallRecord.conversation_summary.is_(None),
                    )
                )
                .values(**values)
            )
            won = result.rowcount == 1

            if won and duration is None:
                record = s.execute(
                    select(CallRecord).where(CallRecord.call_sid == call_sid)
                ).scalars().first()
                if record is not None and record.duration is None and record.start_time:
                    record.duration = int((end_time - record.start_time).total_seconds())
            return won


# =============================================================================
# Leads
# =============================================================================


class LeadRepository(BaseRepository[Lead]):
    model = Lead

    def get_by_call(self, business_id: int, call_sid: str) -> Optional[Lead]:
        with self.db.session() as s:
            return s.execute(
                select(Lead).where(and_(Lead.business_id == business_id, Lead.call_sid == call_sid))
            ).scalars().first()

    def find_by_phone(self, business_id: int, phone_key: str) -> Optional[Lead]:
        """Oldest lead in the business with the same last-10-digit phone key."""
        with self.db.session() as s:
            return s.execute(
                select(Lead)
                .where(and_(Lead.business_id == business_id, Lead.phone_normalized == phone_key))
                .order_by(Lead.id)
            ).scalars().first()

    def insert_if_absent(self, business_id: int, call_sid: str, fields: Dict[str, Any]) -> Tuple[Lead, bool]:
        """Set-on-insert keyed by (business_id, call_sid).

        Returns (lead, created). A duplicate insert racing on the unique
        constraint resolves to the row that won.
        """
        existing = self.get_by_call(business_id, call_sid)
        if existing is not None:
            return existing, False

        lead = Lead(business_id=business_id, call_sid=call_sid, **fields)
        try:
            with self.db.session() as s:
                s.add(lead)
            return lead, True
        except IntegrityError:
            logger.info(f"Lead for call {call_sid} inserted concurrently, reusing it")
            existing = self.get_by_call(business_id, call_sid)
            if existing is None:
                raise
            return existing, False

    def set_ai_summary(self, lead_id: int, record: Dict[str, Any]) -> bool:
        return self.update(lead_id, ai_summary=dict(record), updated_at=utcnow()) is not None

    def set_notification(self, lead_id: int, record: Dict[str, Any]) -> bool:
        return self.update(lead_id, notification=dict(record), updated_at=utcnow()) is not None
