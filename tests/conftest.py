"""Pytest configuration and fixtures for Outreach Agent tests."""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, AsyncIterator
from uuid import uuid4

import pytest
import pytest_asyncio

# Set test environment
os.environ["OUTREACH_ENV"] = "development"
os.environ["OUTREACH_DEBUG"] = "true"

from outreach_agent.conversation.base import (  # noqa: E402
    ConversationService,
    ConversationSession,
    TranscriptAnalysis,
)
from outreach_agent.core.exceptions import SessionUnavailableError  # noqa: E402
from outreach_agent.db.models import (  # noqa: E402
    AppointmentModel,
    AppointmentStatus,
    BusinessModel,
    CallLogModel,
    CallType,
    CampaignCallModel,
    CampaignCallStatus,
    CampaignModel,
    CampaignTemplateModel,
    CampaignType,
    CustomerModel,
    ReminderTemplateModel,
)
from outreach_agent.telephony.base import MockVoiceProvider  # noqa: E402


# Wednesday 2025-01-15 11:00 in America/Los_Angeles
NOW = datetime(2025, 1, 15, 19, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture(autouse=True)
def reset_global_state():
    """Fresh circuit breakers and no rate limiting for every test."""
    from outreach_agent.api.rate_limits import limiter
    from outreach_agent.core import retry

    retry._circuit_breakers.clear()
    limiter.enabled = False
    yield
    retry._circuit_breakers.clear()
    limiter.enabled = True


# ============================================================================
# Async Database Fixtures
# ============================================================================


@pytest_asyncio.fixture(scope="function")
async def db_engine(tmp_path):
    """Create a file-backed SQLite engine.

    File-backed so concurrent sessions share one database, which the
    claim tests rely on.
    """
    from outreach_agent.db.session import create_all, create_engine_for_url

    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_all(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    from outreach_agent.db.session import create_session_factory

    return create_session_factory(db_engine)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator:
    """Session for direct repository tests."""
    async with session_factory() as session:
        yield session
        await session.rollback()


class Seed:
    """Inserts test rows, each in its own committed session."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def _add(self, obj):
        async with self.session_factory() as session:
            session.add(obj)
            await session.commit()
        return obj

    async def business(self, **values: Any) -> BusinessModel:
        values.setdefault("name", "Bright Smile Dental")
        values.setdefault("category", "DENTAL")
        values.setdefault("timezone", "America/Los_Angeles")
        values.setdefault("voice_preference", "Aoede")
        return await self._add(BusinessModel(id=uuid4(), **values))

    async def customer(self, business: BusinessModel, **values: Any) -> CustomerModel:
        values.setdefault("name", "Jane Doe")
        values.setdefault("phone", "+14155550123")
        return await self._add(CustomerModel(id=uuid4(), business_id=business.id, **values))

    async def appointment(
        self,
        business: BusinessModel,
        customer: CustomerModel,
        **values: Any,
    ) -> AppointmentModel:
        values.setdefault("title", "Dental cleaning")
        values.setdefault("scheduled_at", NOW + timedelta(minutes=20))
        values.setdefault("created_at", NOW - timedelta(days=2))
        values.setdefault("reminder_minutes_before", 30)
        values.setdefault("status", AppointmentStatus.SCHEDULED.value)
        return await self._add(
            AppointmentModel(
                id=uuid4(),
                business_id=business.id,
                customer_id=customer.id,
                **values,
            )
        )

    async def campaign(self, business: BusinessModel, **values: Any) -> CampaignModel:
        values.setdefault("campaign_type", CampaignType.RE_ENGAGEMENT.value)
        values.setdefault("name", "Win back")
        values.setdefault("enabled", True)
        values.setdefault("settings", {})
        values.setdefault("next_run_at", NOW + timedelta(days=10))
        return await self._add(CampaignModel(id=uuid4(), business_id=business.id, **values))

    async def campaign_call(
        self,
        campaign: CampaignModel,
        customer: CustomerModel,
        **values: Any,
    ) -> CampaignCallModel:
        values.setdefault("status", CampaignCallStatus.QUEUED.value)
        values.setdefault("scheduled_for", NOW - timedelta(minutes=5))
        return await self._add(
            CampaignCallModel(
                id=uuid4(),
                campaign_id=campaign.id,
                customer_id=customer.id,
                business_id=campaign.business_id,
                **values,
            )
        )

    async def call_log(self, business: BusinessModel, **values: Any) -> CallLogModel:
        values.setdefault("call_type", CallType.REMINDER.value)
        return await self._add(CallLogModel(id=uuid4(), business_id=business.id, **values))

    async def reminder_template(self, **values: Any) -> ReminderTemplateModel:
        values.setdefault("category", "OTHER")
        values.setdefault("system_prompt", "You are calling {customer_name} for {business_name}.")
        values.setdefault("greeting", "Hi {customer_name}!")
        values.setdefault("confirmation_ask", "Can you make it on {appointment_time}?")
        values.setdefault("reschedule_ask", "When would suit you better?")
        values.setdefault("closing", "Thanks, goodbye!")
        values.setdefault("voicemail", "Please call {business_name} back.")
        return await self._add(ReminderTemplateModel(id=uuid4(), **values))

    async def campaign_template(self, **values: Any) -> CampaignTemplateModel:
        values.setdefault("campaign_type", "RE_ENGAGEMENT")
        values.setdefault("business_category", "OTHER")
        values.setdefault("system_prompt", "You are calling {customer_name} for {business_name}.")
        values.setdefault("greeting", "Hi {customer_name}!")
        values.setdefault("goal_prompt", "Invite them back for a visit.")
        values.setdefault("closing", "Thanks, goodbye!")
        values.setdefault("voicemail", "Please call {business_name} back.")
        return await self._add(CampaignTemplateModel(id=uuid4(), **values))

    async def get(self, model, id):
        async with self.session_factory() as session:
            return await session.get(model, id)


@pytest.fixture
def seed(session_factory) -> Seed:
    return Seed(session_factory)


# ============================================================================
# Provider and Conversation Fakes
# ============================================================================


@pytest.fixture
def mock_provider() -> MockVoiceProvider:
    return MockVoiceProvider()


@pytest.fixture
def conversational_provider() -> MockVoiceProvider:
    return MockVoiceProvider(conversational=True)


class FakeSession(ConversationSession):
    """In-memory conversation session."""

    def __init__(self, handle: str, frames: list[str] | None = None):
        self.handle = handle
        self.frames = list(frames or [])
        self.received: list[str] = []
        self.greeted = False
        self.closed = False
        self.messages: list[dict[str, str]] = []

    async def send_audio(self, payload: str) -> None:
        self.received.append(payload)

    async def responses(self) -> AsyncIterator[str]:
        for frame in self.frames:
            yield frame

    @property
    def transcript(self) -> list[dict[str, str]]:
        return list(self.messages)

    async def greet(self) -> None:
        self.greeted = True

    async def close(self) -> None:
        self.closed = True


class FakeConversationService(ConversationService):
    """Opens FakeSessions and returns a canned classification."""

    def __init__(
        self,
        analysis: TranscriptAnalysis | None = None,
        transcript: list[dict[str, str]] | None = None,
        fail_open: bool = False,
    ):
        self.analysis = analysis
        self.transcript = transcript or []
        self.fail_open = fail_open
        self.sessions: dict[str, FakeSession] = {}
        self.prompts: dict[str, str] = {}
        self.classified: list[list[dict[str, Any]] | None] = []

    async def open_session(self, handle, system_prompt, voice=None):
        if self.fail_open:
            raise SessionUnavailableError("Realtime service unreachable")
        session = FakeSession(handle)
        session.messages = list(self.transcript)
        self.sessions[handle] = session
        self.prompts[handle] = system_prompt
        return session

    async def classify(self, transcript):
        self.classified.append(transcript)
        return self.analysis


class FakeAnalyzer:
    """Stands in for TranscriptAnalyzer in API tests."""

    def __init__(self, analysis: TranscriptAnalysis | None = None):
        self.analysis = analysis
        self.calls: list[Any] = []

    async def analyze(self, transcript):
        self.calls.append(transcript)
        return self.analysis

    async def close(self) -> None:
        pass


@pytest.fixture
def conversation_service() -> FakeConversationService:
    return FakeConversationService(
        analysis=TranscriptAnalysis(summary="Customer confirmed.", outcome="CONFIRMED"),
        transcript=[
            {"role": "agent", "content": "Hi Jane, calling about your cleaning."},
            {"role": "user", "content": "Yes, I'll be there."},
        ],
    )


@pytest.fixture
def make_conversation_service():
    """The fake service class, for tests needing non-default behavior."""
    return FakeConversationService


@pytest.fixture
def fake_analyzer() -> FakeAnalyzer:
    return FakeAnalyzer()


# ============================================================================
# API Fixtures
# ============================================================================


@pytest.fixture
def test_settings():
    from outreach_agent.config import Settings, TelephonySettings, WebhookSettings

    return Settings(
        environment="test",
        debug=True,
        instance_id="test-instance",
        internal_api_key="test-internal-key",
        telephony=TelephonySettings(
            provider="mock",
            webhooks=WebhookSettings(validate_signatures=True, hmac_secret="webhook-secret"),
        ),
    )


@pytest.fixture
def app(test_settings, session_factory, mock_provider, fake_analyzer):
    """Application with dependencies bound to the test database and fakes."""
    from outreach_agent import dependencies
    from outreach_agent.api.webhook_security import WebhookSecurityConfig, WebhookSecurityManager
    from outreach_agent.calls.executor import CallEventExecutor
    from outreach_agent.conversation.sessions import SessionArena
    from outreach_agent.main import create_app

    application = create_app()
    arena = SessionArena()
    executor = CallEventExecutor(session_factory, mock_provider, arena)
    security = WebhookSecurityManager(
        WebhookSecurityConfig.from_settings(test_settings.telephony.webhooks)
    )

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application.dependency_overrides.update({
        dependencies.get_app_settings: lambda: test_settings,
        dependencies.get_db: override_get_db,
        dependencies.get_app_session_factory: lambda: session_factory,
        dependencies.get_session_arena: lambda: arena,
        dependencies.get_call_executor: lambda: executor,
        dependencies.get_webhook_security: lambda: security,
        dependencies.get_transcript_analyzer: lambda: fake_analyzer,
    })
    application.state.test_arena = arena
    return application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator:
    """HTTP client running the app in the test's event loop."""
    import httpx

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


@pytest.fixture
def auth_headers(test_settings) -> dict[str, str]:
    return {"Authorization": f"Bearer {test_settings.internal_api_key}"}
