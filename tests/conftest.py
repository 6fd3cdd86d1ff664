"""
Shared fixtures: in-memory database, repositories, a sample business and
mocked model/email adapters.
"""

import os

# Adapters must run unconfigured unless a test opts in
os.environ["OPENAI_API_KEY"] = ""
os.environ["OPENAI_MODEL"] = "gpt-4o-mini"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("SMTP_USER", None)
os.environ.pop("SMTP_PASS", None)
os.environ.pop("OPERATOR_ALERT_EMAIL", None)
os.environ.pop("WEBHOOK_BASE_URL", None)

from unittest.mock import AsyncMock, MagicMock

import pytest

from dialogue import InMemoryConversationStore
from frontdesk.completion_pipeline import CallCompletionPipeline
from frontdesk.database import Database
from frontdesk.email_service import EmailResult, EmailService
from frontdesk.lead_capture_service import LeadCaptureService
from frontdesk.models import FAQ, BusinessProfile, NotificationSettings, ServiceOffering
from frontdesk.notification_service import NotificationDispatcher
from frontdesk.openai_service import OpenAIService
from frontdesk.repositories import BusinessRepository, CallRecordRepository, LeadRepository
from frontdesk.summary_service import SummaryService

BUSINESS_NUMBER = "+15550001111"
CALLER_NUMBER = "+15551234567"

MODEL_SUMMARY = """Caller: Sarah Jones
Phone: (555) 123-4567
Intent: Book a teeth cleaning
Urgency: low
Next step: Call back to schedule a cleaning
Notes: Asked whether Delta insurance is accepted"""


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def db():
    database = Database("sqlite://")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def businesses(db):
    return BusinessRepository(db)


@pytest.fixture
def calls(db):
    return CallRecordRepository(db)


@pytest.fixture
def leads(db):
    return LeadRepository(db)


@pytest.fixture
def business_profile():
    return BusinessProfile(
        business_name="Bright Smile Dental",
        owner_email="owner@brightsmile.test",
        twilio_phone_number=BUSINESS_NUMBER,
        faqs=[
            FAQ(question="What are your hours?", answer="We're open Monday to Friday, 9am to 5pm."),
            FAQ(question="Where are you located?", answer="We're at 12 Main Street, next to the library."),
        ],
        services=[
            ServiceOffering(name="Teeth cleaning", price="$99"),
            ServiceOffering(name="Whitening"),
        ],
        notification_settings=NotificationSettings(
            primary_email="frontdesk@brightsmile.test",
            cc_emails=["manager@brightsmile.test"],
        ),
    )


@pytest.fixture
def business(businesses, business_profile):
    """Stored business, returned as a profile with its id."""
    row = businesses.upsert(business_profile)
    return businesses.to_profile(row)


@pytest.fixture
def store():
    return InMemoryConversationStore()


@pytest.fixture
def fake_openai():
    service = MagicMock(spec=OpenAIService)
    service.model = "gpt-4o-mini"
    service.is_configured = True
    service.answer_question = AsyncMock(return_value="We'd be glad to help with that.")
    service.summarize_conversation = AsyncMock(return_value="Sarah called to book a cleaning.")
    service.extract_lead_info = AsyncMock(return_value=None)
    service.complete = AsyncMock(return_value=MODEL_SUMMARY)
    return service


@pytest.fixture
def fake_email():
    service = MagicMock(spec=EmailService)
    service.is_configured = True
    service.send = AsyncMock(return_value=EmailResult(success=True, message_id="<test@brightsmile.test>"))
    return service


@pytest.fixture
def pipeline(store, calls, leads, businesses, fake_openai, fake_email):
    return CallCompletionPipeline(
        store=store,
        calls=calls,
        leads=leads,
        businesses=businesses,
        lead_capture=LeadCaptureService(leads, calls, fake_openai),
        summary_service=SummaryService(fake_openai),
        notifier=NotificationDispatcher(fake_email),
        openai_service=fake_openai,
    )
