"""
Tests for the Twilio webhook endpoints.

These tests verify that:
1. POST /twilio/voice greets inside a speech <Gather> for a known number
2. POST /twilio/gather drives the dialogue and hangs up when it ends
3. Ending a call runs the completion pipeline exactly once, whichever
   trigger (dialogue end or status callback) arrives first
4. POST /twilio/status and /twilio/recording update the CallRecord
"""

from sqlalchemy import func, select

import pytest
from httpx import ASGITransport, AsyncClient

from frontdesk import main
from frontdesk.db_models import Lead

from conftest import BUSINESS_NUMBER, CALLER_NUMBER

CALL_SID = "CA5555555555555555555555555555eeee"


@pytest.fixture
def svc(fake_openai, fake_email, business_profile):
    """Fresh service container on its own in-memory database."""
    services = main.build_services("sqlite://", openai_service=fake_openai, email_service=fake_email)
    services.businesses.upsert(business_profile)
    main.services = services
    yield services
    main.services = None
    services.db.dispose()


@pytest.fixture
async def client(svc):
    """Create async test client."""
    transport = ASGITransport(app=main.app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def _lead_count(svc) -> int:
    with svc.db.session() as s:
        return s.execute(select(func.count(Lead.id))).scalar()


async def _voice(client, call_sid=CALL_SID, to=BUSINESS_NUMBER):
    return await client.post("/twilio/voice", data={
        "CallSid": call_sid,
        "AccountSid": "AC123",
        "From": CALLER_NUMBER,
        "To": to,
        "CallerCity": "Springfield",
    })


async def _say(client, speech=None, confidence="0.9", call_sid=CALL_SID):
    data = {"CallSid": call_sid}
    if speech is not None:
        data["SpeechResult"] = speech
        data["Confidence"] = confidence
    return await client.post("/twilio/gather", data=data)


class TestVoiceWebhook:
    @pytest.mark.asyncio
    async def test_greets_inside_gather(self, client, svc):
        response = await _voice(client)

        assert response.status_code == 200
        assert "application/xml" in response.headers["content-type"]
        assert "<Gather" in response.text
        assert 'input="speech"' in response.text
        assert 'actionOnEmptyResult="true"' in response.text
        assert "/twilio/gather" in response.text
        assert 'voice="Polly.Joanna"' in response.text
        assert "Thank you for calling Bright Smile Dental!" in response.text
        assert "May I have your name?" in response.text

        record = svc.calls.get_by_sid(CALL_SID)
        assert record is not None
        assert record.from_number == CALLER_NUMBER
        assert record.status == "in-progress"
        assert record.caller_metadata["city"] == "Springfield"
        assert len(svc.calls.get_transcript(record.id)) == 1
        assert CALL_SID in svc.store

    @pytest.mark.asyncio
    async def test_unknown_number_hangs_up(self, client, svc):
        response = await _voice(client, to="+15559990000")

        assert "not currently in service" in response.text
        assert "<Hangup" in response.text
        assert svc.calls.get_by_sid(CALL_SID) is None

    @pytest.mark.asyncio
    async def test_retried_webhook_keeps_one_call(self, client, svc):
        await _voice(client)
        response = await _voice(client)

        assert "May I have your name?" in response.text
        record = svc.calls.get_by_sid(CALL_SID)
        assert len(svc.calls.get_transcript(record.id)) == 1
        assert len(svc.store) == 1


class TestGatherWebhook:
    @pytest.mark.asyncio
    async def test_full_conversation(self, client, svc, fake_email):
        await _voice(client)

        response = await _say(client, "My name is Sarah Jones", "0.92")
        assert "What's the best phone number to reach you?" in response.text
        assert "<Gather" in response.text

        response = await _say(client, "555 123 4567")
        assert "What's the reason for your call today?" in response.text

        response = await _say(client, "I'd like to book a cleaning")
        assert "We'd be glad to help with that." in response.text

        response = await _say(client, "No, that's all")
        assert "<Hangup" in response.text
        assert "(555) 123-4567" in response.text

        record = svc.calls.get_by_sid(CALL_SID)
        assert record.status == "completed"
        assert record.lead_captured is True
        assert record.conversation_summary

        lead = svc.leads.get(record.lead_id)
        assert lead.name == "Sarah Jones"
        assert lead.phone == "+15551234567"
        assert lead.notification["status"] == "sent"
        fake_email.send.assert_awaited_once()
        assert len(svc.store) == 0

        roles = [entry.role for entry in svc.calls.get_transcript(record.id)]
        assert roles == ["assistant", "user"] * 4 + ["assistant"]

    @pytest.mark.asyncio
    async def test_three_silent_turns_end_call(self, client, svc, fake_email):
        await _voice(client)

        first = await _say(client)
        second = await _say(client)
        third = await _say(client)

        assert "I didn't catch that" in first.text and "<Gather" in first.text
        assert "<Gather" in second.text
        assert "having trouble hearing you" in third.text
        assert "<Hangup" in third.text

        record = svc.calls.get_by_sid(CALL_SID)
        assert record.status == "completed"
        assert record.outcome == "no_lead"
        fake_email.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_goodbye_before_any_details_sends_nothing(self, client, svc, fake_openai, fake_email):
        await _voice(client)

        response = await _say(client, "Okay bye")

        assert "<Hangup" in response.text
        record = svc.calls.get_by_sid(CALL_SID)
        assert record.status == "completed"
        assert record.outcome == "no_lead"
        assert record.lead_id is None
        assert _lead_count(svc) == 0
        fake_openai.extract_lead_info.assert_awaited_once()
        fake_email.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_greeting_is_not_taken_as_a_name(self, client, svc):
        await _voice(client)

        response = await _say(client, "Hello, John here")

        assert "Thanks John!" in response.text
        assert svc.store.get(CALL_SID).collected.name == "John"

    @pytest.mark.asyncio
    async def test_low_confidence_reprompts(self, client, svc):
        await _voice(client)
        response = await _say(client, "My name is Sarah Jones", "0.1")

        assert "Sorry, I had trouble understanding" in response.text
        assert "<Gather" in response.text
        assert svc.store.get(CALL_SID).collected.name is None

    @pytest.mark.asyncio
    async def test_unknown_call_ends_politely(self, client, svc):
        response = await _say(client, "hello", call_sid="CAnotstarted")

        assert response.status_code == 200
        assert "lost track of our conversation" in response.text
        assert "<Hangup" in response.text


class TestStatusWebhook:
    @pytest.mark.asyncio
    async def test_status_after_dialogue_end_is_idempotent(self, client, svc, fake_email):
        await _voice(client)
        await _say(client, "My name is Sarah Jones")
        await _say(client, "555 123 4567")
        await _say(client, "goodbye")

        response = await client.post("/twilio/status", data={
            "CallSid": CALL_SID,
            "CallStatus": "completed",
            "CallDuration": "48",
        })

        assert response.json() == {"status": "ok"}
        record = svc.calls.get_by_sid(CALL_SID)
        assert record.status == "completed"
        assert record.gateway_status == "completed"
        assert record.duration == 48
        assert _lead_count(svc) == 1
        fake_email.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_hangup_mid_call_captures_lead(self, client, svc, fake_email):
        await _voice(client)
        await _say(client, "My name is Sarah Jones")

        response = await client.post("/twilio/status", data={
            "CallSid": CALL_SID,
            "CallStatus": "completed",
            "CallDuration": "20",
        })

        assert response.status_code == 200
        record = svc.calls.get_by_sid(CALL_SID)
        assert record.status == "completed"
        assert record.duration == 20

        lead = svc.leads.get(record.lead_id)
        assert lead.name == "Sarah Jones"
        assert lead.phone == CALLER_NUMBER
        assert lead.quality == "cold"
        fake_email.send.assert_awaited_once()
        assert CALL_SID not in svc.store

    @pytest.mark.asyncio
    async def test_non_terminal_status_only_updates(self, client, svc, fake_email):
        await _voice(client)
        response = await client.post("/twilio/status", data={"CallSid": CALL_SID, "CallStatus": "in-progress"})

        assert response.json() == {"status": "ok"}
        assert svc.calls.get_by_sid(CALL_SID).status == "in-progress"
        assert CALL_SID in svc.store
        fake_email.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_call(self, client, svc):
        response = await client.post("/twilio/status", data={"CallSid": "CAghost", "CallStatus": "busy"})
        assert response.json() == {"status": "ok"}


class TestRecordingWebhook:
    @pytest.mark.asyncio
    async def test_recording_stored(self, client, svc):
        await _voice(client)
        response = await client.post("/twilio/recording", data={
            "CallSid": CALL_SID,
            "RecordingUrl": "https://api.twilio.com/recordings/RE123",
            "RecordingSid": "RE123",
            "RecordingStatus": "completed",
        })

        assert response.json() == {"status": "ok"}
        record = svc.calls.get_by_sid(CALL_SID)
        assert record.recording_url == "https://api.twilio.com/recordings/RE123"
        assert record.recording_sid == "RE123"
        assert CALL_SID in svc.store


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client, svc):
        await _voice(client)
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["openaiConfigured"] is True
        assert data["activeCalls"] == 1
