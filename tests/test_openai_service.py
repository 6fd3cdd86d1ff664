"""
Tests for the OpenAI adapter.

These tests verify that:
1. answer_question never raises and falls back to the handoff line
2. extract_lead_info validates model JSON into ExtractedLeadInfo
3. An unconfigured service degrades instead of failing at import time
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from dialogue.state_machine import HANDOFF_ANSWER
from frontdesk.openai_service import OpenAIService, format_transcript


def _completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


@pytest.fixture
def service(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "test-key-for-testing")
    svc = OpenAIService()
    svc.client = MagicMock()
    svc.client.chat.completions.create = AsyncMock(return_value=_completion("ok"))
    return svc


@pytest.fixture
def unconfigured(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "")
    return OpenAIService()


CONTEXT = {
    "business_name": "Bright Smile Dental",
    "custom_instructions": "We only see adult patients.",
    "services": ["Teeth cleaning", "Whitening"],
    "caller_name": "Sarah",
    "is_after_hours": False,
    "history": [
        {"role": "assistant", "content": "What's the reason for your call today?"},
        {"role": "user", "content": "Do you take Delta insurance?"},
    ],
}


class TestAnswerQuestion:
    @pytest.mark.asyncio
    async def test_answer(self, service):
        service.client.chat.completions.create.return_value = _completion("  Yes, we accept Delta plans.  ")

        answer = await service.answer_question("Do you take Delta insurance?", CONTEXT)

        assert answer == "Yes, we accept Delta plans."
        kwargs = service.client.chat.completions.create.await_args.kwargs
        assert kwargs["max_tokens"] == 100
        assert kwargs["model"] == service.model
        messages = kwargs["messages"]
        assert messages[0]["role"] == "system"
        assert "Bright Smile Dental" in messages[0]["content"]
        assert "Teeth cleaning, Whitening" in messages[0]["content"]
        assert messages[-1] == {"role": "user", "content": "Do you take Delta insurance?"}
        assert sum(1 for m in messages if m["content"] == "Do you take Delta insurance?") == 1

    @pytest.mark.asyncio
    async def test_failure_returns_handoff(self, service):
        service.client.chat.completions.create.side_effect = TimeoutError("timed out")
        assert await service.answer_question("Do you do implants?", CONTEXT) == HANDOFF_ANSWER

    @pytest.mark.asyncio
    async def test_empty_answer_returns_handoff(self, service):
        service.client.chat.completions.create.return_value = _completion(None)
        assert await service.answer_question("Do you do implants?", {}) == HANDOFF_ANSWER

    @pytest.mark.asyncio
    async def test_unconfigured(self, unconfigured):
        assert unconfigured.is_configured is False
        assert await unconfigured.answer_question("Do you do implants?", CONTEXT) == HANDOFF_ANSWER


class TestExtractLeadInfo:
    @pytest.mark.asyncio
    async def test_validates_and_coerces(self, service):
        service.client.chat.completions.create.return_value = _completion(json.dumps({
            "firstName": "Mike",
            "lastName": "Lee",
            "phone": "555-987-6543",
            "email": "",
            "quality": "HOT",
            "services": "Whitening",
            "questions": ["Do you open Saturdays?", None, 42],
            "callbackRequested": "yes",
            "interestedIn": "null",
        }))

        info = await service.extract_lead_info("Caller: this is Mike Lee")

        assert info is not None
        assert info.display_name() == "Mike Lee"
        assert info.phone == "555-987-6543"
        assert info.email is None
        assert info.quality.value == "hot"
        assert info.services == ["Whitening"]
        assert info.questions == ["Do you open Saturdays?", "42"]
        assert info.callback_requested is True
        assert info.interested_in is None
        kwargs = service.client.chat.completions.create.await_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}

    @pytest.mark.asyncio
    async def test_unknown_quality(self, service):
        service.client.chat.completions.create.return_value = _completion('{"quality": "lukewarm"}')
        info = await service.extract_lead_info("Caller: hi")
        assert info.quality.value == "unknown"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ["not json", "[1, 2, 3]"])
    async def test_bad_output_returns_none(self, service, content):
        service.client.chat.completions.create.return_value = _completion(content)
        assert await service.extract_lead_info("Caller: hi") is None

    @pytest.mark.asyncio
    async def test_empty_transcript_skips_model(self, service):
        assert await service.extract_lead_info("  ") is None
        service.client.chat.completions.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unconfigured(self, unconfigured):
        assert await unconfigured.extract_lead_info("Caller: hi") is None


class TestSummarizeConversation:
    @pytest.mark.asyncio
    async def test_summary(self, service):
        service.client.chat.completions.create.return_value = _completion("Sarah asked about insurance.")
        assert await service.summarize_conversation(CONTEXT["history"]) == "Sarah asked about insurance."

    @pytest.mark.asyncio
    async def test_unconfigured_raises(self, unconfigured):
        with pytest.raises(RuntimeError):
            await unconfigured.summarize_conversation(CONTEXT["history"])


def test_format_transcript():
    assert format_transcript(CONTEXT["history"]) == (
        "Receptionist: What's the reason for your call today?\n"
        "Caller: Do you take Delta insurance?"
    )
