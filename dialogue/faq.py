"""
FAQResolver - deterministic FAQ lookup tried before any model call.

An FAQ matches when either:
1. at least two significant words from its question appear in the utterance, or
2. the utterance and the FAQ question fall into the same topic group
   (hours, pricing, location, booking, services, demos).

First match in table order wins.
"""

import logging
import re
from typing import Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)

# Words too common to count as evidence of a match
STOPWORDS = {
    "what", "when", "where", "which", "your", "yours", "have", "does", "with",
    "that", "this", "there", "their", "about", "would", "could", "should",
    "will", "from", "they", "them", "then", "than", "into", "just", "like",
    "please", "tell", "know", "want",
}

TOPIC_GROUPS: Sequence[Sequence[str]] = (
    ("hour", "open", "close", "closing", "time"),
    ("price", "pricing", "cost", "charge", "fee", "how much", "rate"),
    ("location", "address", "located", "directions", "parking"),
    ("appointment", "book", "schedule", "reservation", "availability"),
    ("service", "offer", "provide"),
    ("demo", "trial"),
)

MIN_SIGNIFICANT_LENGTH = 4
MIN_WORD_MATCHES = 2


def _significant_words(text: str) -> List[str]:
    words = re.findall(r"[a-z']+", text.lower())
    return [w for w in words if len(w) >= MIN_SIGNIFICANT_LENGTH and w not in STOPWORDS]


def _topics(text: str) -> set:
    lowered = text.lower()
    found = set()
    for index, group in enumerate(TOPIC_GROUPS):
        for keyword in group:
            if re.search(rf"\b{re.escape(keyword)}", lowered):
                found.add(index)
                break
    return found


class FAQResolver:
    """Match caller utterances against a business FAQ table."""

    def match(self, utterance: str, faqs: List[Dict[str, str]]) -> Optional[Dict[str, str]]:
        if not utterance or not faqs:
            return None

        lowered = utterance.lower()
        utterance_topics = _topics(utterance)

        for faq in faqs:
            question = (faq.get("question") or "").strip()
            answer = (faq.get("answer") or "").strip()
            if not question or not answer:
                continue

            hits = sum(1 for word in _significant_words(question) if word in lowered)
            if hits >= MIN_WORD_MATCHES:
                logger.debug(f"FAQ word match ({hits}) for {question!r}")
                return faq

            if utterance_topics & _topics(question):
                logger.debug(f"FAQ topic match for {question!r}")
                return faq

        return None

    def resolve(self, utterance: str, faqs: List[Dict[str, str]]) -> Optional[str]:
        """Return the matching FAQ answer, or None on a miss."""
        faq = self.match(utterance, faqs)
        return faq["answer"].strip() if faq else None
