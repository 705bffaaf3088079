"""Tests for dependency singletons."""

from __future__ import annotations

import pytest

from outreach_agent import dependencies
from outreach_agent.config import Settings, TelephonySettings
from outreach_agent.scheduling.campaigns import CampaignDispatcher
from outreach_agent.scheduling.reminders import ReminderDispatcher
from outreach_agent.telephony.base import MockVoiceProvider


@pytest.fixture
def mock_settings(monkeypatch, session_factory):
    """Settings selecting the mock provider, with singletons reset around the test."""
    settings = Settings(
        instance_id="test-instance",
        telephony=TelephonySettings(provider="mock"),
    )
    monkeypatch.setattr(dependencies, "get_settings", lambda: settings)
    monkeypatch.setattr(dependencies, "get_session_factory", lambda: session_factory)
    dependencies.reset_dependencies()
    yield settings
    dependencies.reset_dependencies()


class TestSingletons:
    """Tests for cached dependency instances."""

    @pytest.mark.asyncio
    async def test_provider_cached_until_reset(self, mock_settings):
        """Test the provider is built once and rebuilt after reset."""
        first = dependencies.get_voice_provider()

        assert isinstance(first, MockVoiceProvider)
        assert dependencies.get_voice_provider() is first

        dependencies.reset_dependencies()

        assert dependencies.get_voice_provider() is not first

    @pytest.mark.asyncio
    async def test_executor_shares_arena_and_provider(self, mock_settings):
        """Test the executor uses the same arena and provider singletons."""
        executor = dependencies.get_call_executor()

        assert executor.arena is dependencies.get_session_arena()
        assert executor.provider is dependencies.get_voice_provider()
        assert dependencies.get_call_executor() is executor

    @pytest.mark.asyncio
    async def test_dispatchers(self, mock_settings):
        """Test both dispatch loops are built from the scheduler settings."""
        reminders = dependencies.get_reminder_dispatcher()
        campaigns = dependencies.get_campaign_dispatcher()

        assert isinstance(reminders, ReminderDispatcher)
        assert isinstance(campaigns, CampaignDispatcher)
        assert reminders.config.interval_seconds == mock_settings.scheduler.reminder_interval_seconds
        assert campaigns.config.interval_seconds == mock_settings.scheduler.campaign_interval_seconds
