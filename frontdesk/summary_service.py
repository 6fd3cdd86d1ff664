"""
SummaryService - structured post-call summary for the Lead.

Output is always the same labeled block:

    Caller: <name>
    Phone: <phone>
    Intent: <what they wanted>
    Urgency: <low|medium|high|unclear>
    Next step: <what the business should do>
    Notes: <anything else>

Missing values are written as "unclear". generate_summary never raises;
every failure comes back as SummaryResult(status="failed", error=...).
"""

import logging
import re
from typing import Dict, List, Optional, Union

from dialogue.signals import format_phone

from .models import SummaryResult
from .openai_service import OpenAIService, format_transcript

logger = logging.getLogger(__name__)

UNCLEAR = "unclear"

SUMMARY_FIELDS = ["Caller", "Phone", "Intent", "Urgency", "Next step", "Notes"]

FALLBACK_NOTE = "AI summary unavailable for this call. Please review the transcript excerpt below."

SUMMARY_PROMPT = """You are summarizing a phone call to a business receptionist for the business owner.
Extract facts only. Do not guess. If something was not said, write "unclear".

Known details collected during the call:
- Caller name: {name}
- Phone: {phone}
- Reason: {reason}

Reply with exactly these six lines and nothing else:
Caller: <caller name>
Phone: <callback number>
Intent: <what the caller wants, one sentence>
Urgency: <low, medium, high or unclear>
Next step: <what the business should do next, one sentence>
Notes: <other relevant details, one sentence>

TRANSCRIPT:
{transcript}"""

_LINE = re.compile(r"^\s*[-*]?\s*(caller|phone|intent|urgency|next step|notes)\s*:\s*(.*)$", re.IGNORECASE)


def _is_unclear(value: Optional[str]) -> bool:
    return not value or value.strip().lower() in (UNCLEAR, "unknown", "n/a", "none", "not provided")


def render_summary(fields: Dict[str, Optional[str]]) -> str:
    lines = []
    for label in SUMMARY_FIELDS:
        value = fields.get(label)
        lines.append(f"{label}: {UNCLEAR if _is_unclear(value) else value.strip()}")
    return "\n".join(lines)


def parse_summary(text: str) -> Dict[str, str]:
    """Pick labeled lines out of model output."""
    fields: Dict[str, str] = {}
    for line in text.splitlines():
        match = _LINE.match(line)
        if not match:
            continue
        label = match.group(1).lower()
        canonical = next(f for f in SUMMARY_FIELDS if f.lower() == label)
        fields[canonical] = match.group(2).strip()
    return fields


def fallback_summary(
    name: Optional[str],
    phone: Optional[str],
    reason: Optional[str],
    note: str = FALLBACK_NOTE,
) -> str:
    """Labeled summary built only from collected fields."""
    return render_summary({
        "Caller": name if name and name != "Unknown" else None,
        "Phone": format_phone(phone) if phone else None,
        "Intent": reason,
        "Urgency": None,
        "Next step": "Call the customer back" if phone else "Review the call transcript",
        "Notes": note,
    })


class SummaryService:
    """Generates the labeled summary through the OpenAI adapter."""

    def __init__(self, openai_service: OpenAIService):
        self.openai_service = openai_service

    @property
    def model(self) -> Optional[str]:
        return self.openai_service.model if self.openai_service else None

    async def generate_summary(
        self,
        transcript: Union[str, List[Dict[str, str]]],
        name: Optional[str] = None,
        phone: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> SummaryResult:
        """GUARANTEE: never raises."""
        try:
            text = transcript if isinstance(transcript, str) else format_transcript(transcript)
            if not text.strip():
                return SummaryResult(text=None, status="failed", model=self.model, error="Empty transcript")

            if self.openai_service is None or not self.openai_service.is_configured:
                return SummaryResult(
                    text=None,
                    status="failed",
                    model=self.model,
                    error="Summary model not configured (missing OPENAI_API_KEY)",
                )

            prompt = SUMMARY_PROMPT.format(
                name=name or UNCLEAR,
                phone=phone or UNCLEAR,
                reason=reason or UNCLEAR,
                transcript=text,
            )
            raw = await self.openai_service.complete(
                [{"role": "user", "content": prompt}],
                max_tokens=200,
                temperature=0.3,
            )
            if not raw:
                return SummaryResult(text=None, status="failed", model=self.model, error="Empty summary response")

            fields = parse_summary(raw)
            if not fields:
                fields = {"Notes": " ".join(raw.split())}

            # Fill gaps from what the script captured
            if _is_unclear(fields.get("Caller")) and name:
                fields["Caller"] = name
            if _is_unclear(fields.get("Phone")) and phone:
                fields["Phone"] = format_phone(phone)
            if _is_unclear(fields.get("Intent")) and reason:
                fields["Intent"] = reason

            logger.info(f"SUMMARY_SUCCESS model={self.model} fields={sorted(fields)}")
            return SummaryResult(text=render_summary(fields), status="success", model=self.model, error=None)

        except Exception as e:
            logger.error(f"SUMMARY_FAILED model={self.model} error={type(e).__name__}: {e}")
            return SummaryResult(text=None, status="failed", model=self.model, error=str(e) or type(e).__name__)
