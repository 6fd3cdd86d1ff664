"""
OpenAI adapter - question answering, call summaries and lead extraction.

The receptionist script never depends on the model for control flow. This
service is consulted for:
1. open caller questions the FAQ table cannot answer (answer_question)
2. the short conversation summary stored on the CallRecord
3. lead extraction from a transcript when no fields were collected

Python 3.9 compatible - uses typing.Dict, typing.List, typing.Optional
"""

import json
import logging
import os
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI
from pydantic import ValidationError

from dialogue.state_machine import HANDOFF_ANSWER

from .models import ExtractedLeadInfo

logger = logging.getLogger(__name__)

RECEPTIONIST_PROMPT = """You are a friendly, professional AI receptionist for {business_name}.

{custom_instructions}

Services offered: {services}

RULES:
- Answer in 1-2 short sentences suitable for being read aloud on a phone call.
- Never invent prices, hours, availability or policies you were not given.
- If you don't know, say the team will follow up with the details.
- Do not ask for the caller's name or phone number; that is handled separately.
{after_hours_note}"""

CONVERSATION_SUMMARY_PROMPT = """Summarize this phone call between a business receptionist and a caller in 2-3 sentences.
Focus on who called, what they wanted and any follow-up needed.

TRANSCRIPT:
{transcript}"""

LEAD_EXTRACTION_PROMPT = """Extract lead information from this phone call transcript.

TRANSCRIPT:
{transcript}

Respond with a JSON object with these keys (use null when not mentioned):
- name: caller's full name
- firstName, lastName
- email
- phone: callback number
- interestedIn: main product/service they asked about
- services: list of services mentioned
- questions: list of questions the caller asked
- callbackRequested: true/false
- appointmentRequested: true/false
- appointmentDetails: requested date/time if any
- specificRequests: anything else they asked for
- quality: one of "hot", "warm", "cold", "unknown"
- summary: one sentence describing the call"""

# Model JSON uses camelCase; ExtractedLeadInfo uses snake_case
_EXTRACTION_KEYS = {
    "firstName": "first_name",
    "lastName": "last_name",
    "interestedIn": "interested_in",
    "callbackRequested": "callback_requested",
    "appointmentRequested": "appointment_requested",
    "appointmentDetails": "appointment_details",
    "specificRequests": "specific_requests",
}


def format_transcript(history: List[Dict[str, str]]) -> str:
    lines = []
    for entry in history:
        speaker = "Caller" if entry.get("role") == "user" else "Receptionist"
        lines.append(f"{speaker}: {entry.get('content', '')}")
    return "\n".join(lines)


class OpenAIService:
    """Thin wrapper over AsyncOpenAI chat completions.

    Missing OPENAI_API_KEY leaves the service unconfigured: answers fall
    back to the handoff line, summaries and extraction report failure.
    """

    def __init__(self):
        api_key = os.getenv("OPENAI_API_KEY")
        self.model = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
        timeout = float(os.getenv("OPENAI_TIMEOUT_SECONDS", "10"))

        if api_key:
            self.client: Optional[AsyncOpenAI] = AsyncOpenAI(api_key=api_key, timeout=timeout)
            logger.info(f"OpenAI service configured with model: {self.model}")
        else:
            self.client = None
            logger.warning("OPENAI_API_KEY not set - model answers and summaries disabled")

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    async def complete(
        self,
        messages: List[Dict[str, str]],
        max_tokens: int,
        temperature: float = 0.3,
        json_mode: bool = False,
    ) -> str:
        """Run one chat completion and return the stripped text. Raises on failure."""
        if self.client is None:
            raise RuntimeError("OpenAI client not configured (missing OPENAI_API_KEY)")

        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = await self.client.chat.completions.create(**kwargs)
        content = response.choices[0].message.content
        return (content or "").strip()

    async def answer_question(self, question: str, context: Dict[str, Any]) -> str:
        """Answer a caller question in 1-2 sentences.

        GUARANTEE: never raises. Any failure returns the handoff line.
        """
        services = context.get("services") or []
        system_prompt = RECEPTIONIST_PROMPT.format(
            business_name=context.get("business_name") or "the business",
            custom_instructions=context.get("custom_instructions") or "",
            services=", ".join(services) if services else "not specified",
            after_hours_note=(
                "- The office is currently closed; offer a callback during business hours."
                if context.get("is_after_hours") else ""
            ),
        )

        messages: List[Dict[str, str]] = [{"role": "system", "content": system_prompt}]
        for entry in context.get("history") or []:
            if entry.get("role") in ("user", "assistant") and entry.get("content"):
                messages.append({"role": entry["role"], "content": entry["content"]})
        if messages[-1]["content"] != question:
            messages.append({"role": "user", "content": question})

        try:
            answer = await self.complete(messages, max_tokens=100, temperature=0.5)
        except Exception as e:
            logger.error(f"METRIC answer_question_failed error={type(e).__name__}: {e}")
            return HANDOFF_ANSWER

        if not answer:
            logger.warning("METRIC answer_question_empty")
            return HANDOFF_ANSWER
        return answer

    async def summarize_conversation(self, history: List[Dict[str, str]]) -> str:
        """Short free-text summary for the CallRecord. Raises on failure."""
        prompt = CONVERSATION_SUMMARY_PROMPT.format(transcript=format_transcript(history))
        text = await self.complete(
            [{"role": "user", "content": prompt}],
            max_tokens=150,
            temperature=0.3,
        )
        if not text:
            raise ValueError("Empty summary from model")
        return text

    async def extract_lead_info(self, transcript: str) -> Optional[ExtractedLeadInfo]:
        """Extract lead fields from a transcript. Returns None on any failure."""
        if not transcript.strip():
            return None

        try:
            raw = await self.complete(
                [
                    {"role": "system", "content": "You extract structured lead data from call transcripts."},
                    {"role": "user", "content": LEAD_EXTRACTION_PROMPT.format(transcript=transcript)},
                ],
                max_tokens=500,
                temperature=0.0,
                json_mode=True,
            )
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(f"METRIC lead_extraction_bad_json error={e}")
            return None
        except Exception as e:
            logger.error(f"METRIC lead_extraction_failed error={type(e).__name__}: {e}")
            return None

        if not isinstance(data, dict):
            logger.error(f"METRIC lead_extraction_bad_shape type={type(data).__name__}")
            return None

        normalized = {_EXTRACTION_KEYS.get(k, k): v for k, v in data.items()}
        try:
            return ExtractedLeadInfo.model_validate(normalized)
        except ValidationError as e:
            logger.error(f"METRIC lead_extraction_invalid errors={e.error_count()}")
            return None


# Singleton instance (created lazily)
_openai_service: Optional[OpenAIService] = None


def get_openai_service() -> OpenAIService:
    """Get or create the OpenAIService singleton."""
    global _openai_service
    if _openai_service is None:
        _openai_service = OpenAIService()
    return _openai_service
