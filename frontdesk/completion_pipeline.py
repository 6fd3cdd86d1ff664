"""
CallCompletionPipeline - lead capture, summary and notification, once per call.

Two triggers can start it for the same call:
(a) the dialogue ending the call from /twilio/gather
(b) Twilio's status callback reporting a terminal status

Both run detached from the caller-facing response and may overlap. They
converge because:
- a finalized CallRecord short-circuits the run,
- Lead creation is an insert-if-absent keyed by (business, call),
- finalize() is a conditional UPDATE and only its winner goes on to attach
  the AI summary and send the notification.

Each external step records its own status; nothing here raises to the caller.
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from dialogue.session import CallSession, CollectedInfo
from dialogue.store import ConversationStore

from .db_models import Lead
from .lead_capture_service import LeadCaptureService
from .models import BusinessProfile
from .notification_service import NotificationDispatcher
from .openai_service import OpenAIService, format_transcript
from .repositories import BusinessRepository, CallRecordRepository, LeadRepository
from .summary_service import SummaryService, fallback_summary

logger = logging.getLogger(__name__)


@dataclass
class CompletionResult:
    call_sid: str
    skipped: bool = False
    reason: Optional[str] = None
    lead_id: Optional[int] = None
    finalized: bool = False
    summary_status: Optional[str] = None
    notification_status: Optional[str] = None


def basic_summary(name: Optional[str], reason: Optional[str]) -> str:
    return f"Call with {name or 'caller'}. Reason: {reason or 'General inquiry'}"


class CallCompletionPipeline:
    def __init__(
        self,
        store: ConversationStore,
        calls: CallRecordRepository,
        leads: LeadRepository,
        businesses: BusinessRepository,
        lead_capture: LeadCaptureService,
        summary_service: SummaryService,
        notifier: NotificationDispatcher,
        openai_service: Optional[OpenAIService] = None,
    ):
        self.store = store
        self.calls = calls
        self.leads = leads
        self.businesses = businesses
        self.lead_capture = lead_capture
        self.summary_service = summary_service
        self.notifier = notifier
        self.openai_service = openai_service

    async def run(
        self,
        call_sid: str,
        trigger: str = "unknown",
        duration: Optional[int] = None,
        session: Optional[CallSession] = None,
    ) -> CompletionResult:
        """Finish a call. GUARANTEE: never raises."""
        started = time.monotonic()
        result = CompletionResult(call_sid=call_sid)
        release_session = False

        try:
            session = session or self.store.get(call_sid)

            call = self.calls.get_by_sid(call_sid)
            if call is None:
                logger.warning(f"PIPELINE_SKIPPED call={call_sid} trigger={trigger} reason=unknown_call")
                result.skipped, result.reason = True, "unknown_call"
                release_session = True
                return result

            if call.is_finalized:
                logger.info(f"PIPELINE_SKIPPED call={call_sid} trigger={trigger} reason=already_finalized")
                result.skipped, result.reason = True, "already_finalized"
                release_session = True
                return result

            business = self._business_profile(call.business_id)
            history = self._history(call.id, session)
            collected = session.collected if session is not None else None
            questions = list(session.questions) if session is not None else []
            transcript = format_transcript(history)

            # Step 2: lead capture
            lead = await self._capture_lead(call, business, history, transcript, collected, questions)
            if lead is not None:
                result.lead_id = lead.id

            # Step 3: conversation summary (never fails)
            name = (collected.name if collected else None) or (lead.name if lead and lead.name != "Unknown" else None)
            reason = (collected.reason if collected else None) or (lead.reason_for_calling if lead else None)
            conversation_summary = await self._conversation_summary(history, name, reason)

            # Step 4: finalize exactly once
            won = self.calls.finalize(
                call_sid,
                conversation_summary,
                duration=duration,
                outcome=None if lead is not None else "no_lead",
            )
            release_session = True
            if not won:
                logger.info(f"PIPELINE_SKIPPED call={call_sid} trigger={trigger} reason=finalized_concurrently")
                result.skipped, result.reason = True, "finalized_concurrently"
                return result

            result.finalized = True
            logger.info(f"CALL_FINALIZED call={call_sid} trigger={trigger} lead={result.lead_id}")

            # Step 5: AI summary + notification for the lead
            if lead is not None and business is not None:
                await self._summarize_and_notify(lead, business, history, collected, result)

            return result

        except Exception as e:
            logger.error(
                f"PIPELINE_FAILED call={call_sid} trigger={trigger} error={type(e).__name__}: {e}",
                exc_info=True,
            )
            result.reason = f"error: {type(e).__name__}"
            return result

        finally:
            # Step 6: drop conversation state once finalized (or already done)
            if release_session:
                self.store.delete(call_sid)
            elapsed_ms = (time.monotonic() - started) * 1000
            logger.info(f"[TIMING] pipeline call={call_sid} trigger={trigger} took {elapsed_ms:.0f}ms")

    # ------------------------------------------------------------------ #

    def _business_profile(self, business_id: int) -> Optional[BusinessProfile]:
        business = self.businesses.get(business_id)
        if business is None:
            logger.error(f"Business {business_id} not found while completing call")
            return None
        return self.businesses.to_profile(business)

    def _history(self, call_record_id: int, session: Optional[CallSession]) -> List[Dict[str, str]]:
        """Session history, or the stored transcript when the session was lost."""
        if session is not None and session.history:
            return list(session.history)
        return [
            {"role": entry.role, "content": entry.content}
            for entry in self.calls.get_transcript(call_record_id)
        ]

    async def _capture_lead(
        self,
        call,
        business: Optional[BusinessProfile],
        history: List[Dict[str, str]],
        transcript: str,
        collected: Optional[CollectedInfo],
        questions: List[str],
    ) -> Optional[Lead]:
        if business is None:
            return None

        has_fields = collected is not None and collected.has_contact()
        caller_spoke = any(entry["role"] == "user" for entry in history)
        if not has_fields and not caller_spoke:
            logger.info(f"LEAD_SKIPPED call={call.call_sid} reason=no_conversation")
            return None

        try:
            return await self.lead_capture.capture_from_call(
                call,
                business,
                transcript,
                collected=collected if has_fields else None,
                questions=questions,
            )
        except Exception as e:
            logger.error(f"LEAD_CAPTURE_FAILED call={call.call_sid} error={type(e).__name__}: {e}", exc_info=True)
            return None

    async def _conversation_summary(
        self,
        history: List[Dict[str, str]],
        name: Optional[str],
        reason: Optional[str],
    ) -> str:
        if len(history) > 2 and self.openai_service is not None and self.openai_service.is_configured:
            try:
                return await self.openai_service.summarize_conversation(history)
            except Exception as e:
                logger.warning(f"Conversation summary failed, using basic summary: {type(e).__name__}: {e}")
        return basic_summary(name, reason)

    async def _summarize_and_notify(
        self,
        lead: Lead,
        business: BusinessProfile,
        history: List[Dict[str, str]],
        collected: Optional[CollectedInfo],
        result: CompletionResult,
    ) -> None:
        name = lead.name if lead.name != "Unknown" else None
        phone = lead.phone or (collected.phone if collected else None)
        reason = lead.reason_for_calling or (collected.reason if collected else None)

        summary = await self.summary_service.generate_summary(history, name=name, phone=phone, reason=reason)
        if summary.status == "success" and summary.text:
            text = summary.text
        else:
            text = fallback_summary(name, phone, reason)
            summary = summary.model_copy(update={"text": text, "status": "failed"})
            if not summary.error:
                summary = summary.model_copy(update={"error": "Summary generation failed"})
            logger.warning(f"SUMMARY_FAILED lead={lead.id} error={summary.error}")
        result.summary_status = summary.status

        try:
            self.leads.set_ai_summary(lead.id, summary.to_record())
        except Exception as e:
            logger.error(f"Failed to store AI summary for lead {lead.id}: {type(e).__name__}: {e}")

        notification = await self.notifier.dispatch(business, lead, text)
        result.notification_status = notification.status
        try:
            self.leads.set_notification(lead.id, notification.to_record())
        except Exception as e:
            logger.error(f"Failed to store notification status for lead {lead.id}: {type(e).__name__}: {e}")
