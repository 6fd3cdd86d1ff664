"""
TwiML builders for the two call-control answers the dialogue can give:
speak and keep listening, or speak and hang up.
"""

import os
from typing import Optional

from twilio.twiml.voice_response import VoiceResponse

DEFAULT_VOICE = "Polly.Joanna"
LANGUAGE = "en-US"
SPEECH_TIMEOUT = "2"
GATHER_TIMEOUT = 10


def _voice() -> str:
    return os.getenv("TWILIO_VOICE", DEFAULT_VOICE)


def gather_action_url() -> str:
    base = (os.getenv("WEBHOOK_BASE_URL") or "").rstrip("/")
    return f"{base}/twilio/gather"


def gather_response(text: str, action_url: Optional[str] = None) -> str:
    """<Say> inside a speech <Gather> that posts back even on silence."""
    response = VoiceResponse()
    gather = response.gather(
        input="speech",
        action=action_url or gather_action_url(),
        method="POST",
        speech_timeout=SPEECH_TIMEOUT,
        timeout=GATHER_TIMEOUT,
        language=LANGUAGE,
        action_on_empty_result=True,
    )
    if text:
        gather.say(text, voice=_voice(), language=LANGUAGE)
    return str(response)


def hangup_response(text: Optional[str] = None) -> str:
    """Optional final <Say>, then <Hangup/>."""
    response = VoiceResponse()
    if text:
        response.say(text, voice=_voice(), language=LANGUAGE)
    response.hangup()
    return str(response)
