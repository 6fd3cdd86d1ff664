"""
DialogueStateMachine - advances one call by one caller utterance per turn.

Each Twilio <Gather> callback is one turn. The machine reads the CallSession
from the injected ConversationStore, decides the next prompt and stage, and
tells the caller-facing layer whether to keep listening or hang up.

Every stage is scripted. The only model call is the QuestionAnswerer,
consulted for open questions the FAQ table cannot answer and capped at
MAX_MODEL_ANSWERS per call.

Python 3.9 compatible.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .faq import FAQResolver
from .session import CallSession
from .signals import (
    extract_name,
    extract_phone,
    format_phone,
    is_goodbye,
    is_negative,
    reprompt_for,
    validate_input,
)
from .stages import Stage
from .store import ConversationStore

logger = logging.getLogger(__name__)

MAX_NO_INPUT = 3
MIN_CONFIDENCE = 0.3
MAX_MODEL_ANSWERS = 3
MAX_CALLER_TURNS = 20
MAX_STAGE_RETRIES = 2

NAME_PROMPT = "May I have your name?"
NO_INPUT_REPROMPT = "I didn't catch that. Could you please repeat?"
NO_INPUT_CLOSING = "I'm having trouble hearing you. Thank you for calling. Goodbye!"
LOW_CONFIDENCE_REPROMPT = "Sorry, I had trouble understanding. Could you say that again?"
LOST_STATE_CLOSING = (
    "I'm sorry, I lost track of our conversation. "
    "Please call back and we'll be happy to help. Goodbye!"
)
ERROR_REPROMPT = "I'm sorry, I had trouble with that. Could you please repeat?"
TURN_LIMIT_CLOSING = "Thank you for your call. Someone will follow up with you shortly. Goodbye!"
HANDOFF_ANSWER = "Got it. I'll make sure our team follows up with you on that."
DEFLECTION = (
    "That's a great question. I'll make sure someone from our team calls you back "
    "with the details. Is there anything else?"
)


@dataclass
class Action:
    """What a stage handler wants said next."""
    speak: str
    end_call: bool = False


@dataclass
class TurnResult:
    """Outcome of one turn, returned to the webhook layer."""
    speak: str
    end_call: bool
    stage: Stage
    transcript_entries: List[Dict[str, str]] = field(default_factory=list)
    lost_state: bool = False


class DialogueStateMachine:
    """Scripted receptionist flow over a ConversationStore.

    answerer must provide `async answer_question(question, context) -> str`
    and is expected never to raise. When it is None, open questions get the
    handoff line instead.
    """

    def __init__(
        self,
        store: ConversationStore,
        answerer: Any = None,
        faq_resolver: Optional[FAQResolver] = None,
        phone_region: str = "US",
    ):
        self.store = store
        self.answerer = answerer
        self.faq_resolver = faq_resolver or FAQResolver()
        self.phone_region = phone_region

    # ------------------------------------------------------------------ #
    # Call start
    # ------------------------------------------------------------------ #

    def start(
        self,
        call_sid: str,
        business_id: int,
        business_name: str,
        custom_greeting: Optional[str] = None,
        faqs: Optional[List[Dict[str, str]]] = None,
        services: Optional[List[str]] = None,
        custom_instructions: Optional[str] = None,
        is_after_hours: bool = False,
        call_record_id: Optional[int] = None,
    ) -> TurnResult:
        """Create the session for a new call and return the greeting."""
        existing = self.store.get(call_sid)
        if existing is not None and not existing.ended:
            # Gateway retried the voice webhook; repeat the current prompt
            logger.info(f"Call {call_sid} already has a session at stage={existing.stage.value}")
            last = next(
                (e["content"] for e in reversed(existing.history) if e["role"] == "assistant"),
                NAME_PROMPT,
            )
            return TurnResult(speak=last, end_call=False, stage=existing.stage)

        session = CallSession(
            call_sid=call_sid,
            business_id=business_id,
            business_name=business_name,
            call_record_id=call_record_id,
            faqs=list(faqs or []),
            services=list(services or []),
            custom_instructions=custom_instructions,
            is_after_hours=is_after_hours,
        )

        greeting = self._greeting(session, custom_greeting)
        entry = session.add_assistant(greeting)
        session.stage = Stage.GET_NAME
        self.store.set(call_sid, session)

        logger.info(f"Call {call_sid} started for business={business_name!r} after_hours={is_after_hours}")
        return TurnResult(
            speak=greeting,
            end_call=False,
            stage=session.stage,
            transcript_entries=[entry],
        )

    @staticmethod
    def _greeting(session: CallSession, custom_greeting: Optional[str]) -> str:
        if custom_greeting and custom_greeting.strip():
            opener = custom_greeting.strip()
        elif session.is_after_hours:
            opener = (
                f"Thank you for calling {session.business_name}! Our office is closed right now, "
                f"but I can take a message and have someone call you back."
            )
        else:
            opener = f"Thank you for calling {session.business_name}! I'm here to help you today."
        return f"{opener} {NAME_PROMPT}"

    # ------------------------------------------------------------------ #
    # Turns
    # ------------------------------------------------------------------ #

    async def handle_turn(
        self,
        call_sid: str,
        utterance: Optional[str],
        confidence: Optional[float] = None,
    ) -> TurnResult:
        """Process one caller utterance. Never raises."""
        started = time.monotonic()

        session = self.store.get(call_sid)
        if session is None:
            logger.warning(f"No conversation state for call {call_sid}, ending call")
            return TurnResult(
                speak=LOST_STATE_CLOSING,
                end_call=True,
                stage=Stage.END,
                lost_state=True,
            )

        mark = len(session.history)
        stage_before = session.stage
        try:
            action = await self._advance(session, utterance, confidence)
        except Exception as e:
            logger.error(
                f"Turn failed for call {call_sid} at stage={session.stage.value}: "
                f"{type(e).__name__}: {e}",
                exc_info=True,
            )
            action = Action(ERROR_REPROMPT)

        if action.speak:
            session.add_assistant(action.speak)
        if action.end_call:
            session.stage = Stage.END
            session.ended = True

        elapsed_ms = (time.monotonic() - started) * 1000
        logger.info(
            f"[TIMING] call={call_sid} stage {stage_before.value} -> {session.stage.value} "
            f"end_call={action.end_call} in {elapsed_ms:.0f}ms"
        )

        return TurnResult(
            speak=action.speak,
            end_call=action.end_call,
            stage=session.stage,
            transcript_entries=list(session.history[mark:]),
        )

    async def _advance(
        self,
        session: CallSession,
        utterance: Optional[str],
        confidence: Optional[float],
    ) -> Action:
        if session.ended or session.stage.is_terminal:
            return Action("", end_call=True)

        text = (utterance or "").strip()

        if not text:
            session.no_input_count += 1
            logger.info(f"Call {session.call_sid}: empty utterance ({session.no_input_count}/{MAX_NO_INPUT})")
            if session.no_input_count >= MAX_NO_INPUT:
                return Action(NO_INPUT_CLOSING, end_call=True)
            return Action(NO_INPUT_REPROMPT)

        if confidence is not None and confidence < MIN_CONFIDENCE:
            logger.info(f"Call {session.call_sid}: low confidence {confidence:.2f} for {text[:40]!r}")
            return Action(LOW_CONFIDENCE_REPROMPT)

        session.no_input_count = 0
        session.add_user(text)
        session.turn_count += 1
        logger.debug(f"Call {session.call_sid} [{session.stage.value}] caller: {text[:80]!r}")

        if is_goodbye(text, session.stage):
            if session.stage == Stage.FOLLOW_UP:
                return Action(self._closing(session), end_call=True)
            return Action(self._farewell(session), end_call=True)

        if session.turn_count >= MAX_CALLER_TURNS:
            logger.info(f"Call {session.call_sid}: turn limit reached")
            return Action(TURN_LIMIT_CLOSING, end_call=True)

        handler = getattr(self, f"_handle_{session.stage.value}")
        return await handler(session, text)

    # ------------------------------------------------------------------ #
    # Stage handlers
    # ------------------------------------------------------------------ #

    async def _handle_greeting(self, session: CallSession, text: str) -> Action:
        session.stage = Stage.GET_NAME
        return await self._handle_get_name(session, text)

    async def _handle_get_name(self, session: CallSession, text: str) -> Action:
        valid, reason = validate_input(text, Stage.GET_NAME)
        name = extract_name(text) if valid else None

        if not name:
            if self._can_retry(session):
                return Action(reprompt_for(Stage.GET_NAME, reason))
            self._move(session, Stage.GET_PHONE)
            return Action("No problem. What's the best phone number to reach you?")

        session.collected.name = name
        self._move(session, Stage.GET_PHONE)
        return Action(f"Thanks {name}! What's the best phone number to reach you?")

    async def _handle_get_phone(self, session: CallSession, text: str) -> Action:
        valid, reason = validate_input(text, Stage.GET_PHONE)

        if reason == "no_phone":
            self._move(session, Stage.GET_REASON)
            return Action("No problem! What's the reason for your call today?")

        phone = extract_phone(text, self.phone_region) if valid else None
        if not phone:
            if self._can_retry(session):
                return Action(reprompt_for(Stage.GET_PHONE, reason))
            self._move(session, Stage.GET_REASON)
            return Action("No problem. What's the reason for your call today?")

        session.collected.phone = phone
        self._move(session, Stage.GET_REASON)
        return Action("Perfect. What's the reason for your call today?")

    async def _handle_get_reason(self, session: CallSession, text: str) -> Action:
        valid, reason = validate_input(text, Stage.GET_REASON)
        if not valid and self._can_retry(session):
            return Action(reprompt_for(Stage.GET_REASON, reason))

        session.collected.reason = text
        answer = await self._answer(session, text)
        self._move(session, Stage.FOLLOW_UP)

        if answer is None:
            return Action("Thanks, I've noted that. Is there anything else I can help you with?")
        return Action(f"{answer} Is there anything else I can help you with?")

    async def _handle_follow_up(self, session: CallSession, text: str) -> Action:
        if is_negative(text):
            return Action(self._closing(session), end_call=True)

        answer = await self._answer(session, text)
        if answer is None:
            session.questions.append(text)
            return Action(DEFLECTION)
        return Action(f"{answer} Anything else I can help with?")

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    async def _answer(self, session: CallSession, text: str) -> Optional[str]:
        """FAQ first, then the model while under the per-call cap."""
        faq_answer = self.faq_resolver.resolve(text, session.faqs)
        if faq_answer:
            logger.info(f"Call {session.call_sid}: answered from FAQ")
            session.questions.append(text)
            return faq_answer

        if session.question_count >= MAX_MODEL_ANSWERS:
            logger.info(f"Call {session.call_sid}: model answer cap reached, deflecting")
            return None

        session.question_count += 1
        session.questions.append(text)

        if self.answerer is None:
            return HANDOFF_ANSWER

        context = {
            "business_name": session.business_name,
            "custom_instructions": session.custom_instructions,
            "services": session.services,
            "caller_name": session.collected.name,
            "is_after_hours": session.is_after_hours,
            "history": session.history[-6:],
        }
        answer = await self.answerer.answer_question(text, context)
        logger.info(
            f"Call {session.call_sid}: model answer {session.question_count}/{MAX_MODEL_ANSWERS}"
        )
        return (answer or "").strip() or HANDOFF_ANSWER

    @staticmethod
    def _can_retry(session: CallSession) -> bool:
        session.stage_attempts += 1
        return session.stage_attempts <= MAX_STAGE_RETRIES

    @staticmethod
    def _move(session: CallSession, stage: Stage) -> None:
        session.stage = stage
        session.stage_attempts = 0

    @staticmethod
    def _farewell(session: CallSession) -> str:
        return (
            f"Thank you for calling {session.business_name}. "
            f"We'll be in touch soon. Have a great day!"
        )

    @staticmethod
    def _closing(session: CallSession) -> str:
        name = session.collected.name
        phone = session.collected.phone
        if phone:
            return (
                f"Great! We'll reach out to {name or 'you'} at {format_phone(phone)} soon. "
                f"Thank you for calling {session.business_name}. Have a wonderful day!"
            )
        if name:
            return (
                f"Great! Thanks {name}, and thank you for calling {session.business_name}. "
                f"Have a wonderful day!"
            )
        return f"Great! Thank you for calling {session.business_name}. Have a wonderful day!"
