"""Tests for the campaign dispatch loop."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from outreach_agent.core.exceptions import DialError
from outreach_agent.db.models import (
    CallLogModel,
    CampaignCallModel,
    CampaignCallStatus,
    CampaignModel,
    CampaignType,
)
from outreach_agent.scheduling.campaigns import (
    INVALID_PHONE_REASON,
    NO_CONVERSATION_REASON,
    CampaignDispatcher,
)


async def campaign_calls(session_factory, campaign_id) -> list[CampaignCallModel]:
    async with session_factory() as session:
        result = await session.execute(
            select(CampaignCallModel)
            .where(CampaignCallModel.campaign_id == campaign_id)
            .order_by(CampaignCallModel.scheduled_for)
        )
        return list(result.scalars().all())


@pytest.fixture
def dispatcher(session_factory, conversational_provider) -> CampaignDispatcher:
    return CampaignDispatcher(session_factory, conversational_provider)


class TestCampaignDispatch:
    """Tests for the dispatch phase."""

    @pytest.mark.asyncio
    async def test_dispatches_due_call(
        self, dispatcher, conversational_provider, seed, session_factory, now
    ):
        """Test a due queued call is claimed, dialed and logged."""
        business = await seed.business()
        customer = await seed.customer(business)
        campaign = await seed.campaign(business, settings={"days_since_last_appointment": 45})
        call = await seed.campaign_call(campaign, customer)

        report = await dispatcher.run_once(now)

        assert report.dispatch.dispatched == 1
        request = conversational_provider.dialed[0]
        assert request.to == customer.phone
        assert request.reference == str(call.id)
        assert request.context.call_type == CampaignType.RE_ENGAGEMENT.value
        assert request.context.campaign_call_id == str(call.id)
        assert request.extra["settings"] == {"days_since_last_appointment": 45}

        stored = await seed.get(CampaignCallModel, call.id)
        assert stored.status == CampaignCallStatus.IN_PROGRESS.value
        assert stored.started_at == now

        async with session_factory() as session:
            log = (await session.execute(select(CallLogModel))).scalar_one()
        assert log.campaign_call_id == call.id
        assert log.room_name == f"mock-room-{call.id}"

    @pytest.mark.asyncio
    async def test_future_call_not_dispatched(self, dispatcher, conversational_provider, seed, now):
        """Test calls scheduled later stay queued."""
        business = await seed.business()
        customer = await seed.customer(business)
        campaign = await seed.campaign(business)
        await seed.campaign_call(campaign, customer, scheduled_for=now + timedelta(hours=1))

        report = await dispatcher.run_once(now)

        assert report.dispatch.candidates == 0
        assert conversational_provider.dialed == []

    @pytest.mark.asyncio
    async def test_outside_window(self, dispatcher, conversational_provider, seed):
        """Test nothing is dialed on a disallowed day."""
        business = await seed.business()
        customer = await seed.customer(business)
        campaign = await seed.campaign(business)
        await seed.campaign_call(
            campaign, customer, scheduled_for=datetime(2025, 1, 17, 0, tzinfo=timezone.utc)
        )
        saturday = datetime(2025, 1, 18, 19, 0, tzinfo=timezone.utc)

        report = await dispatcher.run_once(saturday)

        assert report.outside_window == 1
        assert conversational_provider.dialed == []

    @pytest.mark.asyncio
    async def test_max_concurrent_calls(
        self, dispatcher, conversational_provider, seed, session_factory, now
    ):
        """Test no more than max_concurrent_calls are in progress."""
        business = await seed.business()
        campaign = await seed.campaign(business, max_concurrent_calls=2)
        for i in range(3):
            customer = await seed.customer(business, phone=f"+1415555010{i}")
            await seed.campaign_call(campaign, customer, scheduled_for=now - timedelta(minutes=10 - i))

        report = await dispatcher.run_once(now)

        assert report.dispatch.dispatched == 2
        statuses = [call.status for call in await campaign_calls(session_factory, campaign.id)]
        assert statuses == [
            CampaignCallStatus.IN_PROGRESS.value,
            CampaignCallStatus.IN_PROGRESS.value,
            CampaignCallStatus.QUEUED.value,
        ]

        # Slots stay taken until the agent reports results
        later = await dispatcher.run_once(now + timedelta(minutes=30))
        assert later.dispatch.dispatched == 0

    @pytest.mark.asyncio
    async def test_min_spacing_between_calls(self, dispatcher, conversational_provider, seed, now):
        """Test a new call waits min_minutes_between_calls after the last start."""
        business = await seed.business()
        campaign = await seed.campaign(business, min_minutes_between_calls=5)
        first = await seed.customer(business)
        second = await seed.customer(business, phone="+14155550999")
        await seed.campaign_call(
            campaign, first,
            status=CampaignCallStatus.COMPLETED.value,
            started_at=now - timedelta(minutes=2),
        )
        await seed.campaign_call(campaign, second)

        too_soon = await dispatcher.run_once(now)
        assert too_soon.dispatch.dispatched == 0

        report = await dispatcher.run_once(now + timedelta(minutes=3))
        assert report.dispatch.dispatched == 1

    @pytest.mark.asyncio
    async def test_invalid_phone_skipped(self, dispatcher, conversational_provider, seed, now):
        """Test an undialable number ends SKIPPED with a reason."""
        business = await seed.business()
        customer = await seed.customer(business, phone="0123")
        campaign = await seed.campaign(business)
        call = await seed.campaign_call(campaign, customer)

        report = await dispatcher.run_once(now)

        assert report.dispatch.skipped == 1
        assert conversational_provider.dialed == []
        stored = await seed.get(CampaignCallModel, call.id)
        assert stored.status == CampaignCallStatus.SKIPPED.value
        assert stored.skip_reason == INVALID_PHONE_REASON

    @pytest.mark.asyncio
    async def test_requires_conversational_provider(self, session_factory, mock_provider, seed, now):
        """Test campaign calls fail when only announce-and-gather is available."""
        business = await seed.business()
        customer = await seed.customer(business)
        campaign = await seed.campaign(business)
        call = await seed.campaign_call(campaign, customer)

        report = await CampaignDispatcher(session_factory, mock_provider).run_once(now)

        assert report.dispatch.failed == 1
        assert mock_provider.dialed == []
        stored = await seed.get(CampaignCallModel, call.id)
        assert stored.status == CampaignCallStatus.FAILED.value
        assert stored.skip_reason == NO_CONVERSATION_REASON

    @pytest.mark.asyncio
    async def test_dial_failure_requeues(self, dispatcher, conversational_provider, seed, now):
        """Test a failed dial puts the call back in the queue."""
        business = await seed.business()
        customer = await seed.customer(business)
        campaign = await seed.campaign(business)
        call = await seed.campaign_call(campaign, customer)
        conversational_provider.fail_next_dial = DialError("Room service down")

        report = await dispatcher.run_once(now)

        assert report.dispatch.failed == 1
        stored = await seed.get(CampaignCallModel, call.id)
        assert stored.status == CampaignCallStatus.QUEUED.value
        assert stored.started_at is None

    @pytest.mark.asyncio
    async def test_broken_campaign_does_not_block_others(
        self, dispatcher, conversational_provider, seed, now
    ):
        """Test one campaign's error is counted and the rest proceed."""
        broken_business = await seed.business(name="Broken")
        await seed.campaign(broken_business, call_window_start="99:99")
        business = await seed.business()
        customer = await seed.customer(business)
        campaign = await seed.campaign(business)
        await seed.campaign_call(campaign, customer)

        report = await dispatcher.run_once(now)

        assert report.errors == 1
        assert report.dispatch.dispatched == 1


class TestCampaignEvaluationTrigger:
    """Tests for the evaluation phase inside the loop."""

    @pytest.mark.asyncio
    async def test_evaluates_when_due(self, dispatcher, seed, session_factory, now):
        """Test an overdue campaign queues eligible customers and advances its cycle."""
        business = await seed.business()
        lapsed = await seed.customer(business)
        await seed.appointment(
            business, lapsed, scheduled_at=now - timedelta(days=60),
            status="COMPLETED", reminder_enabled=False,
        )
        campaign = await seed.campaign(business, next_run_at=now - timedelta(minutes=1))

        report = await dispatcher.run_once(now)

        assert len(report.evaluations) == 1
        assert report.evaluations[0].queued == 1
        calls = await campaign_calls(session_factory, campaign.id)
        assert [call.customer_id for call in calls] == [lapsed.id]
        assert calls[0].status == CampaignCallStatus.QUEUED.value
        # Thursday 09:00 in Los Angeles
        assert calls[0].scheduled_for == datetime(2025, 1, 16, 17, 0, tzinfo=timezone.utc)

        stored = await seed.get(CampaignModel, campaign.id)
        assert stored.last_run_at == now
        assert stored.next_run_at == now + timedelta(days=30)

    @pytest.mark.asyncio
    async def test_concurrent_dispatchers_evaluate_once(
        self, session_factory, conversational_provider, seed, now
    ):
        """Test two replicas ticking together queue each customer once."""
        business = await seed.business()
        for index in range(3):
            customer = await seed.customer(business, phone=f"+1415555010{index}")
            await seed.appointment(
                business, customer, scheduled_at=now - timedelta(days=60),
                status="COMPLETED", reminder_enabled=False,
            )
        campaign = await seed.campaign(business, next_run_at=now - timedelta(minutes=1))
        first = CampaignDispatcher(session_factory, conversational_provider)
        second = CampaignDispatcher(session_factory, conversational_provider)

        reports = await asyncio.gather(first.run_once(now), second.run_once(now))

        assert sum(len(report.evaluations) for report in reports) == 1
        calls = await campaign_calls(session_factory, campaign.id)
        assert len(calls) == 3
        assert len({call.customer_id for call in calls}) == 3

    @pytest.mark.asyncio
    async def test_never_evaluated_campaign_runs(self, dispatcher, seed, now):
        """Test a campaign without next_run_at is evaluated."""
        business = await seed.business()
        await seed.campaign(business, next_run_at=None)

        report = await dispatcher.run_once(now)

        assert len(report.evaluations) == 1

    @pytest.mark.asyncio
    async def test_skips_evaluation_before_next_run(self, dispatcher, seed, now):
        """Test no evaluation happens before next_run_at."""
        business = await seed.business()
        await seed.customer(business)
        await seed.campaign(business, next_run_at=now + timedelta(days=1))

        report = await dispatcher.run_once(now)

        assert report.evaluations == []
