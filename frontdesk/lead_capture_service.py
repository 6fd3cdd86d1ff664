"""
LeadCaptureService - turns a finished call into one Lead.

Resolution order:
1. A Lead already linked to this call is returned as-is.
2. Fields the script collected (name/phone/reason) are used directly.
3. Only when nothing was collected, the transcript goes through model
   extraction, validated into ExtractedLeadInfo. An extraction with no
   name, phone or interest produces no Lead.

The caller's number only fills in the phone of a Lead that already has
collected or extracted content.

Repeat callers are merged into their existing Lead by the last 10 digits of
their phone number within the same business.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from dialogue.session import CollectedInfo
from dialogue.signals import normalize_phone_key

from .db_models import CallRecord, Lead
from .models import BusinessProfile, ExtractedLeadInfo, LeadQuality, higher_quality
from .openai_service import OpenAIService
from .repositories import CallRecordRepository, LeadRepository

logger = logging.getLogger(__name__)

NOTE_AUTHOR = "AI Receptionist"


def _union(existing: Optional[List[str]], incoming: Optional[List[str]]) -> List[str]:
    """Order-preserving, case-insensitive union."""
    merged: List[str] = []
    seen = set()
    for item in list(existing or []) + list(incoming or []):
        key = item.strip().lower()
        if key and key not in seen:
            seen.add(key)
            merged.append(item.strip())
    return merged


def info_from_collected(collected: CollectedInfo, questions: Optional[List[str]] = None) -> ExtractedLeadInfo:
    """Build lead info from scripted fields. No model cost."""
    return ExtractedLeadInfo(
        name=collected.name,
        phone=collected.phone,
        interested_in=collected.reason,
        questions=questions or [],
        quality=LeadQuality.WARM if collected.phone else LeadQuality.COLD,
        summary=collected.reason or "General inquiry",
    )


class LeadCaptureService:
    def __init__(
        self,
        leads: LeadRepository,
        calls: CallRecordRepository,
        openai_service: Optional[OpenAIService] = None,
    ):
        self.leads = leads
        self.calls = calls
        self.openai_service = openai_service

    async def capture_from_call(
        self,
        call: CallRecord,
        business: BusinessProfile,
        transcript: str,
        collected: Optional[CollectedInfo] = None,
        questions: Optional[List[str]] = None,
    ) -> Optional[Lead]:
        """Create or merge the Lead for a call. Returns None when nothing usable was captured."""
        existing = self._lead_for_call(call, business)
        if existing is not None:
            logger.info(f"LEAD_EXISTS call={call.call_sid} lead={existing.id}")
            return existing

        if collected is not None and not collected.is_empty():
            info = info_from_collected(collected, questions)
            source = "collected"
        else:
            info = await self._extract(transcript)
            info.questions = _union(info.questions, questions)
            source = "extracted"
            if not info.has_content():
                # Caller ID alone is not a lead
                logger.info(f"LEAD_SKIPPED call={call.call_sid} reason=nothing_extracted")
                return None

        phone = info.phone or call.from_number
        if not phone:
            logger.info(f"LEAD_SKIPPED call={call.call_sid} reason=no_phone source={source}")
            return None
        phone_key = normalize_phone_key(phone)

        duplicate = self.leads.find_by_phone(business.id, phone_key) if phone_key else None
        if duplicate is not None:
            lead = self._merge(duplicate, call, info, transcript)
        else:
            lead = self._create(call, business, info, phone, phone_key, transcript)

        self.calls.mark_lead_captured(call.call_sid, lead.id)
        logger.info(
            f"LEAD_CAPTURED call={call.call_sid} lead={lead.id} source={source} "
            f"quality={lead.quality} merged={duplicate is not None}"
        )
        return lead

    def _lead_for_call(self, call: CallRecord, business: BusinessProfile) -> Optional[Lead]:
        if call.lead_id:
            lead = self.leads.get(call.lead_id)
            if lead is not None:
                return lead
        return self.leads.get_by_call(business.id, call.call_sid)

    async def _extract(self, transcript: str) -> ExtractedLeadInfo:
        if self.openai_service is None or not transcript.strip():
            return ExtractedLeadInfo()
        info = await self.openai_service.extract_lead_info(transcript)
        return info or ExtractedLeadInfo()

    def _create(
        self,
        call: CallRecord,
        business: BusinessProfile,
        info: ExtractedLeadInfo,
        phone: str,
        phone_key: Optional[str],
        transcript: str,
    ) -> Lead:
        metadata = dict(call.caller_metadata or {})
        fields: Dict[str, Any] = {
            "call_record_id": call.id,
            "call_sids": [call.call_sid],
            "phone": phone,
            "phone_normalized": phone_key,
            "name": info.display_name() or "Unknown",
            "email": info.email,
            "source": "phone_call",
            "status": "new",
            "quality": info.quality.value,
            "interested_in": info.interested_in,
            "reason_for_calling": info.interested_in or info.summary,
            "services": list(info.services),
            "questions": list(info.questions),
            "conversation_summary": info.summary or "General inquiry",
            "transcript": transcript,
            "callback_requested": info.callback_requested,
            "appointment_requested": info.appointment_requested,
            "appointment_details": info.appointment_details,
            "notes": [],
            "caller_metadata": metadata,
        }
        lead, created = self.leads.insert_if_absent(business.id, call.call_sid, fields)
        if not created:
            logger.info(f"LEAD_EXISTS call={call.call_sid} lead={lead.id} (concurrent insert)")
        return lead

    def _merge(self, lead: Lead, call: CallRecord, info: ExtractedLeadInfo, transcript: str) -> Lead:
        linked = list(lead.call_sids or [])
        if call.call_sid in linked:
            return lead

        summary = info.summary or info.interested_in or "General inquiry"
        notes = list(lead.notes or [])
        notes.append({
            "content": f"Follow-up call: {summary}",
            "created_by": NOTE_AUTHOR,
            "created_at": datetime.utcnow().isoformat(),
        })

        changes: Dict[str, Any] = {
            "call_sids": linked + [call.call_sid],
            "call_record_id": call.id,
            "services": _union(lead.services, info.services),
            "questions": _union(lead.questions, info.questions),
            "quality": higher_quality(lead.quality, info.quality.value),
            "callback_requested": bool(lead.callback_requested or info.callback_requested),
            "appointment_requested": bool(lead.appointment_requested or info.appointment_requested),
            "appointment_details": info.appointment_details or lead.appointment_details,
            "email": info.email or lead.email,
            "interested_in": info.interested_in or lead.interested_in,
            "reason_for_calling": info.interested_in or lead.reason_for_calling,
            "transcript": transcript or lead.transcript,
            "notes": notes,
            "updated_at": datetime.utcnow(),
        }
        name = info.display_name()
        if name and name != "Unknown":
            changes["name"] = name

        updated = self.leads.update(lead.id, **changes)
        logger.info(f"LEAD_MERGED lead={lead.id} call={call.call_sid} quality={changes['quality']}")
        return updated or lead
