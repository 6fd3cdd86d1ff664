"""
Deterministic caller-input heuristics.

Everything here is pure string handling: goodbye/negative detection,
per-stage input validation, name and phone extraction. No model calls.

Python 3.9 compatible.
"""

import logging
import re
from typing import List, Optional, Tuple

import phonenumbers

from .stages import Stage

logger = logging.getLogger(__name__)


# Phrases that end the call even while we are still collecting details
EXPLICIT_GOODBYES: List[str] = [
    "goodbye",
    "good bye",
    "bye bye",
    "gotta go",
    "got to go",
    "have to go",
    "talk later",
    "talk to you later",
]

# Once details are collected, softer closings count too
FLEXIBLE_GOODBYES: List[str] = EXPLICIT_GOODBYES + [
    "bye",
    "thank you bye",
    "that's all",
    "that is all",
    "no thanks",
    "no thank you",
]

BARE_GOODBYES = {"bye", "ok bye", "okay bye", "bye now", "thanks bye"}

NEGATIVE_PHRASES: List[str] = [
    "nothing else",
    "that's it",
    "that is it",
    "that's all",
    "that is all",
    "that'll be all",
    "i'm good",
    "i am good",
    "i'm all set",
    "all set",
    "we're good",
    "no thanks",
    "no thank you",
    "not really",
    "not right now",
    "i think that's everything",
]

NEGATIVE_OPENERS = {"no", "nope", "nah"}

FILLER_WORDS = {
    "um", "uh", "umm", "uhh", "hmm", "er", "ah", "yes", "yeah", "yep",
    "no", "ok", "okay", "hello", "hi", "hey", "sure", "what", "huh", "so",
}

WH_WORDS = {"what", "when", "where", "how", "why", "who", "which"}

# "no is there parking" is a question, not a closing
AUXILIARY_WORDS = {
    "is", "are", "was", "do", "does", "did", "can", "could", "will",
    "would", "should", "may", "any",
}

REQUEST_OPENERS = (
    "can you",
    "could you",
    "do you",
    "does",
    "are you",
    "is there",
    "i have a question",
    "i need",
    "i want",
    "i'd like",
    "i would like",
    "i was wondering",
    "i'm calling",
    "i am calling",
)

NO_PHONE_PATTERNS = (
    "don't have",
    "dont have",
    "do not have",
    "no phone",
    "not sure",
    "rather not",
    "prefer not",
    "same number",
    "this number",
)

NAME_LEAD_IN = re.compile(
    r"^(?:(?:um+|uh+|er|ah|hmm|oh|well|so|hi|hello|hey|yes|yeah|yep|sure|ok|okay)"
    r"(?:\s+there)?[,.!]?\s+)+",
    re.IGNORECASE,
)

NAME_PREFIX = re.compile(
    r"^(?:my name is|my name's|the name is|name's|this is|i'm|i am|it's|it is|call me)(?:\s+|$)",
    re.IGNORECASE,
)

NAME_TRAILERS = {"here", "speaking"}

NOT_NAMES = FILLER_WORDS | {"there"}

WORD_TO_DIGIT = {
    "zero": "0", "oh": "0", "o": "0",
    "one": "1", "two": "2", "three": "3", "four": "4",
    "five": "5", "six": "6", "seven": "7", "eight": "8", "nine": "9",
}

MIN_PHONE_DIGITS = 7


def _normalize(text: str) -> str:
    text = text.lower().replace("’", "'")
    text = re.sub(r"[^a-z0-9'\s]", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def _contains_phrase(text: str, phrase: str) -> bool:
    return re.search(rf"\b{re.escape(phrase)}\b", text) is not None


def is_goodbye(text: str, stage: Stage) -> bool:
    """Return True if the utterance is the caller signing off.

    During data stages only explicit phrases count, so "no" or "that's all"
    while giving a phone number is not mistaken for a goodbye.
    """
    normalized = _normalize(text)
    if not normalized:
        return False
    if normalized in BARE_GOODBYES:
        return True
    phrases = EXPLICIT_GOODBYES if stage.collects_data else FLEXIBLE_GOODBYES
    return any(_contains_phrase(normalized, phrase) for phrase in phrases)


def is_negative(text: str) -> bool:
    """Caller has nothing else to ask."""
    if "?" in text:
        return False
    normalized = _normalize(text)
    if not normalized:
        return False
    if any(_contains_phrase(normalized, phrase) for phrase in NEGATIVE_PHRASES):
        return True
    words = normalized.split()
    if words[0] not in NEGATIVE_OPENERS or len(words) > 4:
        return False
    if len(words) > 1 and (words[1] in WH_WORDS or words[1] in AUXILIARY_WORDS):
        return False
    return not looks_like_question(" ".join(words[1:]))


def looks_like_question(text: str) -> bool:
    if text.strip().endswith("?"):
        return True
    normalized = _normalize(text)
    if not normalized:
        return False
    if normalized.split()[0] in WH_WORDS:
        return True
    return normalized.startswith(REQUEST_OPENERS)


def words_to_digits(text: str) -> str:
    """Convert spoken digit words and single digits to a digit string.

    Example: "five five five one two three four" -> "5551234"
    """
    tokens = re.findall(r"[a-zA-Z]+|\d", text.lower())
    digits = []
    for tok in tokens:
        if tok in WORD_TO_DIGIT:
            digits.append(WORD_TO_DIGIT[tok])
        elif tok.isdigit():
            digits.append(tok)
    return "".join(digits)


def phone_digits(text: str) -> str:
    """Digits in the utterance, falling back to spoken digit words."""
    digits = re.sub(r"\D", "", text)
    if len(digits) < MIN_PHONE_DIGITS:
        spoken = words_to_digits(text)
        if len(spoken) > len(digits):
            digits = spoken
    return digits


def is_phone_refusal(text: str) -> bool:
    normalized = _normalize(text)
    return any(pattern in normalized for pattern in NO_PHONE_PATTERNS)


def validate_input(text: str, stage: Stage) -> Tuple[bool, Optional[str]]:
    """Check an utterance is usable for the current stage.

    Returns (valid, reason). Reasons: too_short, filler, question,
    no_phone.
    """
    cleaned = text.strip()
    normalized = _normalize(cleaned)

    if stage == Stage.GET_NAME:
        if len(normalized.replace(" ", "")) < 2:
            return False, "too_short"
        if normalized in FILLER_WORDS:
            return False, "filler"
        if looks_like_question(cleaned):
            return False, "question"
        return True, None

    if stage == Stage.GET_PHONE:
        if len(phone_digits(cleaned)) >= MIN_PHONE_DIGITS:
            return True, None
        if is_phone_refusal(cleaned):
            return False, "no_phone"
        return False, "too_short"

    if stage == Stage.GET_REASON:
        if normalized in FILLER_WORDS:
            return False, "filler"
        if len(normalized) < 5 and len(normalized.split()) < 2:
            return False, "too_short"
        return True, None

    return True, None


def reprompt_for(stage: Stage, reason: Optional[str]) -> str:
    if stage == Stage.GET_NAME:
        if reason == "question":
            return "I'd be happy to help with that! But first, may I have your name?"
        return "I didn't quite catch your name. Could you tell me your name?"
    if stage == Stage.GET_PHONE:
        return "I didn't get that number. Could you repeat your phone number?"
    if stage == Stage.GET_REASON:
        return "Could you tell me a bit more about why you're calling today?"
    return "Sorry, could you say that again?"


def extract_name(text: str) -> Optional[str]:
    """Pull a caller name out of an utterance like "Hi, this is sarah jones"."""
    cleaned = text.strip().replace("’", "'")
    cleaned = NAME_LEAD_IN.sub("", cleaned)
    cleaned = NAME_PREFIX.sub("", cleaned)
    # Drop anything after the name: "Sarah and I'm calling about..."
    cleaned = re.split(r",|\.|\band\b|\bi'm\b|\bi\b", cleaned, maxsplit=1, flags=re.IGNORECASE)[0]
    words = re.findall(r"[A-Za-z][A-Za-z'\-]*", cleaned)
    words = [w for w in words if w.lower() not in NAME_TRAILERS]
    if not words or words[0].lower() in NOT_NAMES:
        return None
    name = " ".join(w[:1].upper() + w[1:].lower() for w in words[:3])
    return name if len(name) >= 2 else None


def extract_phone(text: str, region: str = "US") -> Optional[str]:
    """Extract a callback number, E.164 when it is dialable as given, raw digits otherwise.

    Local-only numbers ("555-1234") stay as digits.
    """
    digits = phone_digits(text)
    if len(digits) < MIN_PHONE_DIGITS:
        return None

    candidate = f"+{digits}" if "+" in text else digits
    try:
        parsed = phonenumbers.parse(candidate, region)
        reason = phonenumbers.is_possible_number_with_reason(parsed)
        if reason == phonenumbers.ValidationResult.IS_POSSIBLE:
            return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)
    except phonenumbers.NumberParseException as e:
        logger.debug(f"Phone parse failed for {digits!r}: {e}")
    return digits


def normalize_phone_key(phone: Optional[str]) -> Optional[str]:
    """Last 10 digits, the de-duplication key for leads."""
    if not phone:
        return None
    digits = re.sub(r"\D", "", phone)
    return digits[-10:] if digits else None


def format_phone(phone: Optional[str]) -> str:
    """Render a number for people: (555) 123-4567 for 10-digit numbers."""
    if not phone:
        return "Not provided"
    digits = re.sub(r"\D", "", phone)
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    if len(digits) == 10:
        return f"({digits[:3]}) {digits[3:6]}-{digits[6:]}"
    return phone
