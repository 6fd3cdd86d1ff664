"""
Pydantic models for business profiles and post-call results.
Python 3.9 compatible - uses typing.List, typing.Dict, typing.Optional
"""

import logging
from datetime import datetime, time
from enum import Enum
from typing import Any, Dict, List, Optional

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


class LeadQuality(str, Enum):
    COLD = "cold"
    UNKNOWN = "unknown"
    WARM = "warm"
    HOT = "hot"


QUALITY_RANK: Dict[str, int] = {
    LeadQuality.COLD.value: 1,
    LeadQuality.UNKNOWN.value: 2,
    LeadQuality.WARM.value: 3,
    LeadQuality.HOT.value: 4,
}


def higher_quality(current: Optional[str], incoming: Optional[str]) -> str:
    """Return whichever tier ranks higher (cold < unknown < warm < hot)."""
    current = current if current in QUALITY_RANK else LeadQuality.UNKNOWN.value
    incoming = incoming if incoming in QUALITY_RANK else LeadQuality.UNKNOWN.value
    return incoming if QUALITY_RANK[incoming] > QUALITY_RANK[current] else current


class CallStatus(str, Enum):
    INITIATED = "initiated"
    RINGING = "ringing"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"
    BUSY = "busy"
    NO_ANSWER = "no-answer"
    CANCELED = "canceled"


TERMINAL_CALL_STATUSES = {
    CallStatus.COMPLETED.value,
    CallStatus.FAILED.value,
    CallStatus.BUSY.value,
    CallStatus.NO_ANSWER.value,
    CallStatus.CANCELED.value,
    "cancelled",
}


# ============================================================================
# Business profile
# ============================================================================

class FAQ(BaseModel):
    question: str
    answer: str


class ServiceOffering(BaseModel):
    name: str
    description: Optional[str] = None
    price: Optional[str] = None


class BusinessHours(BaseModel):
    day: str  # "monday" .. "sunday"
    open: Optional[str] = None  # "09:00"
    close: Optional[str] = None  # "17:00"
    is_closed: bool = False


class NotificationSettings(BaseModel):
    primary_email: Optional[str] = None
    cc_emails: List[str] = Field(default_factory=list)
    enable_email: bool = True


class BusinessProfile(BaseModel):
    """Snapshot of a business's receptionist configuration."""
    id: Optional[int] = None
    business_name: str
    owner_email: Optional[str] = None
    twilio_phone_number: str
    is_active: bool = True
    custom_greeting: Optional[str] = None
    custom_instructions: Optional[str] = None
    faqs: List[FAQ] = Field(default_factory=list)
    services: List[ServiceOffering] = Field(default_factory=list)
    business_hours: List[BusinessHours] = Field(default_factory=list)
    timezone: str = "America/New_York"
    notification_settings: NotificationSettings = Field(default_factory=NotificationSettings)

    def faq_table(self) -> List[Dict[str, str]]:
        return [{"question": f.question, "answer": f.answer} for f in self.faqs]

    def service_names(self) -> List[str]:
        return [s.name for s in self.services if s.name]

    def is_currently_open(self, now: Optional[datetime] = None) -> bool:
        """Evaluate business hours in the business timezone.

        `now` should be timezone-aware. No hours configured means always open.
        """
        if not self.business_hours:
            return True

        try:
            tz = ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone {self.timezone!r} for {self.business_name}, assuming open")
            return True

        local = (now or datetime.now(ZoneInfo("UTC"))).astimezone(tz)
        day_name = local.strftime("%A").lower()

        for hours in self.business_hours:
            if hours.day.lower() != day_name:
                continue
            if hours.is_closed or not hours.open or not hours.close:
                return False
            try:
                opens = time.fromisoformat(hours.open)
                closes = time.fromisoformat(hours.close)
            except ValueError:
                logger.warning(f"Bad business hours {hours.open}-{hours.close} for {self.business_name}")
                return True
            return opens <= local.time() < closes

        return False


# ============================================================================
# Language-model extraction result
# ============================================================================

class ExtractedLeadInfo(BaseModel):
    """Strict, optional-field view of model-extracted lead details.

    Model JSON is coerced here before it touches a Lead: unknown quality
    values become "unknown", list fields drop non-string junk, blank strings
    become None.
    """
    name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    interested_in: Optional[str] = None
    services: List[str] = Field(default_factory=list)
    questions: List[str] = Field(default_factory=list)
    callback_requested: bool = False
    appointment_requested: bool = False
    appointment_details: Optional[str] = None
    specific_requests: Optional[str] = None
    quality: LeadQuality = LeadQuality.UNKNOWN
    summary: Optional[str] = None

    @field_validator(
        "name", "first_name", "last_name", "email", "phone", "interested_in",
        "appointment_details", "specific_requests", "summary",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        if not isinstance(value, str):
            value = str(value)
        value = value.strip()
        if not value or value.lower() in ("null", "none", "unknown", "n/a"):
            return None
        return value

    @field_validator("services", "questions", mode="before")
    @classmethod
    def _string_list(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, list):
            return []
        return [str(v).strip() for v in value if isinstance(v, (str, int, float)) and str(v).strip()]

    @field_validator("callback_requested", "appointment_requested", mode="before")
    @classmethod
    def _loose_bool(cls, value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in ("true", "yes", "1")
        return bool(value)

    @field_validator("quality", mode="before")
    @classmethod
    def _coerce_quality(cls, value: Any) -> str:
        if isinstance(value, str) and value.strip().lower() in QUALITY_RANK:
            return value.strip().lower()
        return LeadQuality.UNKNOWN.value

    def display_name(self) -> Optional[str]:
        if self.name:
            return self.name
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) if parts else None

    def has_content(self) -> bool:
        return bool(self.display_name() or self.phone or self.interested_in)


# ============================================================================
# Post-call results
# ============================================================================

class SummaryResult(BaseModel):
    text: Optional[str] = None
    status: str  # "success" | "failed"
    model: Optional[str] = None
    error: Optional[str] = None

    def to_record(self, generated_at: Optional[datetime] = None) -> Dict[str, Any]:
        return {
            "text": self.text,
            "status": self.status,
            "model": self.model,
            "generated_at": (generated_at or datetime.utcnow()).isoformat(),
            "error": self.error,
        }


class NotificationRecord(BaseModel):
    status: str  # "sent" | "failed"
    sent_at: Optional[datetime] = None
    error: Optional[str] = None
    recipients: List[str] = Field(default_factory=list)

    def to_record(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "error": self.error,
            "recipients": list(self.recipients),
        }
