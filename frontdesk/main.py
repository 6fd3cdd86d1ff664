"""
Frontdesk - FastAPI application for the AI phone receptionist.

Twilio webhooks:
- POST /twilio/voice      call connected: greet and start listening
- POST /twilio/gather     one caller utterance: next prompt or hang up
- POST /twilio/status     call lifecycle: terminal statuses finish the call
- POST /twilio/recording  recording reference for the CallRecord

The dialogue is scripted (dialogue package). When a call ends, the
completion pipeline runs as a background task after the TwiML response.

Python 3.9 compatible.
"""

import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from fastapi import BackgroundTasks, FastAPI, Form
from fastapi.responses import Response

from dialogue import DialogueStateMachine, InMemoryConversationStore
from dialogue.store import ConversationStore

from .completion_pipeline import CallCompletionPipeline
from .database import Database
from .email_service import EmailService
from .lead_capture_service import LeadCaptureService
from .models import TERMINAL_CALL_STATUSES
from .notification_service import NotificationDispatcher
from .openai_service import OpenAIService, get_openai_service
from .repositories import BusinessRepository, CallRecordRepository, LeadRepository
from .summary_service import SummaryService
from .twiml import gather_response, hangup_response

# Load environment variables from the project .env
env_paths = [
    Path(__file__).parent.parent / ".env",  # project root .env
    Path.cwd() / ".env",  # current working directory
]
for env_path in env_paths:
    if env_path.exists():
        load_dotenv(env_path)
        break
else:
    load_dotenv()

logging.basicConfig(
    level=logging.DEBUG if os.getenv("DEBUG", "false").lower() == "true" else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

NOT_IN_SERVICE = "We're sorry, this number is not currently in service. Goodbye."
TECHNICAL_DIFFICULTIES = "We're sorry, we're having technical difficulties. Please try again later. Goodbye."


@dataclass
class Services:
    """Everything the webhooks need, wired once per process."""
    db: Database
    store: ConversationStore
    businesses: BusinessRepository
    calls: CallRecordRepository
    leads: LeadRepository
    openai_service: OpenAIService
    email_service: EmailService
    state_machine: DialogueStateMachine
    pipeline: CallCompletionPipeline


def build_services(
    database_url: Optional[str] = None,
    store: Optional[ConversationStore] = None,
    openai_service: Optional[OpenAIService] = None,
    email_service: Optional[EmailService] = None,
) -> Services:
    db = Database(database_url)
    db.create_all()

    store = store if store is not None else InMemoryConversationStore()
    openai_service = openai_service or get_openai_service()
    email_service = email_service or EmailService()

    businesses = BusinessRepository(db)
    calls = CallRecordRepository(db)
    leads = LeadRepository(db)

    state_machine = DialogueStateMachine(
        store,
        answerer=openai_service,
        phone_region=os.getenv("DEFAULT_PHONE_REGION", "US"),
    )
    pipeline = CallCompletionPipeline(
        store=store,
        calls=calls,
        leads=leads,
        businesses=businesses,
        lead_capture=LeadCaptureService(leads, calls, openai_service),
        summary_service=SummaryService(openai_service),
        notifier=NotificationDispatcher(email_service),
        openai_service=openai_service,
    )
    return Services(
        db=db,
        store=store,
        businesses=businesses,
        calls=calls,
        leads=leads,
        openai_service=openai_service,
        email_service=email_service,
        state_machine=state_machine,
        pipeline=pipeline,
    )


# Service container (created lazily, replaceable in tests)
services: Optional[Services] = None


def get_services() -> Services:
    global services
    if services is None:
        services = build_services()
    return services


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - initialize services."""
    logger.info("=" * 60)
    logger.info("Initializing Frontdesk")
    logger.info("=" * 60)

    svc = get_services()
    logger.info(f"OPENAI configured: {svc.openai_service.is_configured} model={svc.openai_service.model}")
    logger.info(f"SMTP configured: {svc.email_service.is_configured}")

    profiles_path = os.getenv("BUSINESS_PROFILES_PATH")
    if profiles_path:
        count = svc.businesses.load_profiles(profiles_path)
        logger.info(f"Loaded {count} business profile(s) from {profiles_path}")

    logger.info("=" * 60)

    yield

    svc.db.dispose()
    logger.info("Shutting down Frontdesk")


app = FastAPI(
    title="Frontdesk",
    description="Scripted AI phone receptionist with lead capture and owner notifications",
    version="0.1.0",
    lifespan=lifespan,
)


def _twiml(content: str) -> Response:
    return Response(content=content, media_type="application/xml")


def _parse_confidence(raw: Optional[str]) -> Optional[float]:
    if raw is None or not str(raw).strip():
        return None
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Unparseable Confidence value {raw!r}")
        return None


def _parse_duration(raw: Optional[str]) -> Optional[int]:
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Unparseable CallDuration value {raw!r}")
        return None


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    svc = get_services()
    return {
        "status": "healthy",
        "version": "0.1.0",
        "openaiConfigured": svc.openai_service.is_configured,
        "emailConfigured": svc.email_service.is_configured,
        "activeCalls": len(svc.store),
    }


@app.post("/twilio/voice")
async def twilio_voice(
    CallSid: str = Form(...),
    AccountSid: Optional[str] = Form(None),
    From: Optional[str] = Form(None),
    To: Optional[str] = Form(None),
    CallerCity: Optional[str] = Form(None),
    CallerState: Optional[str] = Form(None),
    CallerCountry: Optional[str] = Form(None),
    CallerName: Optional[str] = Form(None),
):
    """
    Twilio voice webhook - called when an inbound call connects.

    Resolves the business by the dialed number, records the call and
    speaks the greeting inside a speech <Gather>.
    """
    received_at = datetime.utcnow()
    logger.info(f"[TIMING] /twilio/voice received at {received_at.isoformat()} CallSid={CallSid} From={From} To={To}")

    try:
        svc = get_services()

        business = svc.businesses.get_by_phone_number(To) if To else None
        if business is None or not business.is_active:
            logger.warning(f"twilio_voice: no active business for number {To}")
            return _twiml(hangup_response(NOT_IN_SERVICE))

        profile = svc.businesses.to_profile(business)
        is_after_hours = not profile.is_currently_open()

        metadata: Dict[str, Any] = {
            "city": CallerCity,
            "state": CallerState,
            "country": CallerCountry,
            "caller_name": CallerName,
            "is_after_hours": is_after_hours,
        }
        record, created = svc.calls.create_or_get(
            CallSid,
            business.id,
            from_number=From,
            to_number=To,
            account_sid=AccountSid,
            caller_metadata=metadata,
        )

        turn = svc.state_machine.start(
            CallSid,
            business_id=business.id,
            business_name=profile.business_name,
            custom_greeting=profile.custom_greeting,
            faqs=profile.faq_table(),
            services=profile.service_names(),
            custom_instructions=profile.custom_instructions,
            is_after_hours=is_after_hours,
            call_record_id=record.id,
        )
        svc.calls.append_transcript(record.id, turn.transcript_entries)

        logger.info(f"Call {CallSid} {'created' if created else 'resumed'} for {profile.business_name!r}")
        return _twiml(gather_response(turn.speak))

    except Exception as e:
        logger.error(f"twilio_voice failed for {CallSid}: {type(e).__name__}: {e}", exc_info=True)
        return _twiml(hangup_response(TECHNICAL_DIFFICULTIES))


@app.post("/twilio/gather")
async def twilio_gather(
    background_tasks: BackgroundTasks,
    CallSid: str = Form(...),
    SpeechResult: Optional[str] = Form(None),
    Confidence: Optional[str] = Form(None),
):
    """
    Twilio gather webhook - one caller utterance per request.

    Empty SpeechResult arrives here too (actionOnEmptyResult). When the
    dialogue ends the call, the completion pipeline is scheduled to run
    after the response.
    """
    started = datetime.utcnow()
    confidence = _parse_confidence(Confidence)
    logger.info(f"/twilio/gather CallSid={CallSid} speech={(SpeechResult or '')[:60]!r} confidence={confidence}")

    try:
        svc = get_services()
        turn = await svc.state_machine.handle_turn(CallSid, SpeechResult, confidence)
    except Exception as e:
        logger.error(f"twilio_gather failed for {CallSid}: {type(e).__name__}: {e}", exc_info=True)
        return _twiml(hangup_response(TECHNICAL_DIFFICULTIES))

    if turn.transcript_entries:
        try:
            record = svc.calls.get_by_sid(CallSid)
            if record is not None:
                svc.calls.append_transcript(record.id, turn.transcript_entries)
        except Exception as e:
            logger.error(f"Failed to persist transcript for {CallSid}: {type(e).__name__}: {e}")

    elapsed_ms = (datetime.utcnow() - started).total_seconds() * 1000
    logger.info(f"[TIMING] /twilio/gather CallSid={CallSid} stage={turn.stage.value} took {elapsed_ms:.0f}ms")

    if turn.end_call:
        background_tasks.add_task(svc.pipeline.run, CallSid, "dialogue_end")
        return _twiml(hangup_response(turn.speak))

    return _twiml(gather_response(turn.speak))


@app.post("/twilio/status")
async def twilio_status(
    background_tasks: BackgroundTasks,
    CallSid: str = Form(...),
    CallStatus: str = Form(...),
    CallDuration: Optional[str] = Form(None),
):
    """
    Twilio status callback webhook.

    Called by Twilio when call status changes:
    - initiated, ringing, in-progress, completed, busy, no-answer, failed, canceled

    Terminal statuses schedule the completion pipeline.
    """
    duration = _parse_duration(CallDuration)
    logger.info(f"Twilio status webhook: CallSid={CallSid}, status={CallStatus}, duration={duration}")

    svc = get_services()
    try:
        if not svc.calls.update_status(CallSid, CallStatus, duration):
            logger.warning(f"twilio_status: Unknown call_id {CallSid}")
    except Exception as e:
        logger.error(f"twilio_status: failed to update {CallSid}: {type(e).__name__}: {e}")

    if CallStatus.lower() in TERMINAL_CALL_STATUSES:
        background_tasks.add_task(svc.pipeline.run, CallSid, "status_callback", duration)

    return {"status": "ok"}


@app.post("/twilio/recording")
async def twilio_recording(
    CallSid: str = Form(...),
    RecordingUrl: str = Form(...),
    RecordingSid: Optional[str] = Form(None),
    RecordingStatus: Optional[str] = Form(None),
):
    """
    Twilio recording status callback webhook.

    Attaches the recording reference to the CallRecord; conversation state
    is not touched.
    """
    logger.info(f"Twilio recording webhook: CallSid={CallSid}, status={RecordingStatus}, url={RecordingUrl}")

    svc = get_services()
    try:
        if svc.calls.set_recording(CallSid, RecordingUrl, RecordingSid):
            logger.info(f"Call {CallSid} recording stored")
        else:
            logger.warning(f"twilio_recording: Unknown call_id {CallSid}")
    except Exception as e:
        logger.error(f"twilio_recording: failed to store for {CallSid}: {type(e).__name__}: {e}")

    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run(app, host="0.0.0.0", port=port)
