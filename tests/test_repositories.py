"""Tests for repositories, the conditional claims in particular."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from outreach_agent.core.exceptions import CampaignAlreadyExistsError, RecordNotFoundError
from outreach_agent.db.models import (
    AppointmentModel,
    AppointmentStatus,
    CampaignCallModel,
    CampaignCallStatus,
    CampaignModel,
    CampaignType,
)
from outreach_agent.db.repositories import (
    AppointmentRepository,
    CallLogRepository,
    CampaignCallRepository,
    CampaignRepository,
    CustomerRepository,
    TemplateRepository,
)


async def claim_appointment(session_factory, appointment_id) -> bool:
    async with session_factory() as session:
        claimed = await AppointmentRepository(session).claim_for_reminder(appointment_id)
        await session.commit()
    return claimed


async def claim_campaign_call(session_factory, call_id, now) -> bool:
    async with session_factory() as session:
        claimed = await CampaignCallRepository(session).claim(call_id, now)
        await session.commit()
    return claimed


# ============================================================================
# Claims
# ============================================================================


class TestAppointmentClaims:
    """Tests for the SCHEDULED -> REMINDED claim."""

    @pytest.mark.asyncio
    async def test_concurrent_claims_have_one_winner(self, seed, session_factory):
        """Test five racing claimers produce exactly one success."""
        business = await seed.business()
        customer = await seed.customer(business)
        appointment = await seed.appointment(business, customer)

        results = await asyncio.gather(
            *(claim_appointment(session_factory, appointment.id) for _ in range(5))
        )

        assert results.count(True) == 1
        stored = await seed.get(AppointmentModel, appointment.id)
        assert stored.status == AppointmentStatus.REMINDED.value

    @pytest.mark.asyncio
    async def test_claim_requires_scheduled(self, seed, session_factory):
        """Test a confirmed appointment cannot be claimed."""
        business = await seed.business()
        customer = await seed.customer(business)
        appointment = await seed.appointment(
            business, customer, status=AppointmentStatus.CONFIRMED.value
        )

        assert await claim_appointment(session_factory, appointment.id) is False

    @pytest.mark.asyncio
    async def test_release_returns_to_scheduled(self, seed, session_factory):
        """Test releasing a claim makes the appointment claimable again."""
        business = await seed.business()
        customer = await seed.customer(business)
        appointment = await seed.appointment(business, customer)
        await claim_appointment(session_factory, appointment.id)

        async with session_factory() as session:
            released = await AppointmentRepository(session).release_reminder_claim(appointment.id)
            await session.commit()

        assert released is True
        assert await claim_appointment(session_factory, appointment.id) is True


class TestCampaignCallClaims:
    """Tests for the campaign call status transitions."""

    @pytest.mark.asyncio
    async def test_concurrent_claims_have_one_winner(self, seed, session_factory, now):
        """Test five racing claimers produce exactly one IN_PROGRESS."""
        business = await seed.business()
        customer = await seed.customer(business)
        campaign = await seed.campaign(business)
        call = await seed.campaign_call(campaign, customer)

        results = await asyncio.gather(
            *(claim_campaign_call(session_factory, call.id, now) for _ in range(5))
        )

        assert results.count(True) == 1
        stored = await seed.get(CampaignCallModel, call.id)
        assert stored.status == CampaignCallStatus.IN_PROGRESS.value
        assert stored.started_at == now

    @pytest.mark.asyncio
    async def test_release_clears_started_at(self, seed, session_factory, now):
        """Test a released call is QUEUED again with no start time."""
        business = await seed.business()
        customer = await seed.customer(business)
        campaign = await seed.campaign(business)
        call = await seed.campaign_call(campaign, customer)
        await claim_campaign_call(session_factory, call.id, now)

        async with session_factory() as session:
            assert await CampaignCallRepository(session).release(call.id) is True
            await session.commit()

        stored = await seed.get(CampaignCallModel, call.id)
        assert stored.status == CampaignCallStatus.QUEUED.value
        assert stored.started_at is None

    @pytest.mark.asyncio
    async def test_skip_only_from_queued(self, seed, session_factory, now):
        """Test a claimed call cannot be skipped."""
        business = await seed.business()
        customer = await seed.customer(business)
        campaign = await seed.campaign(business)
        call = await seed.campaign_call(campaign, customer)
        await claim_campaign_call(session_factory, call.id, now)

        async with session_factory() as session:
            skipped = await CampaignCallRepository(session).mark_skipped(call.id, "nope")
            await session.commit()

        assert skipped is False

    @pytest.mark.asyncio
    async def test_mark_failed_records_reason(self, seed, session_factory, now):
        """Test a claimed call can be failed with a reason."""
        business = await seed.business()
        customer = await seed.customer(business)
        campaign = await seed.campaign(business)
        call = await seed.campaign_call(campaign, customer)
        await claim_campaign_call(session_factory, call.id, now)

        async with session_factory() as session:
            assert await CampaignCallRepository(session).mark_failed(call.id, "boom") is True
            await session.commit()

        stored = await seed.get(CampaignCallModel, call.id)
        assert stored.status == CampaignCallStatus.FAILED.value
        assert stored.skip_reason == "boom"
        assert stored.completed_at is not None


# ============================================================================
# Queries
# ============================================================================


class TestAppointmentQueries:
    """Tests for AppointmentRepository queries."""

    @pytest.mark.asyncio
    async def test_reminder_candidates_filter(self, seed, db_session, now):
        """Test only SCHEDULED, reminder-enabled appointments in range are returned."""
        business = await seed.business()
        customer = await seed.customer(business)
        inside = await seed.appointment(business, customer)
        await seed.appointment(business, customer, reminder_enabled=False)
        await seed.appointment(business, customer, status=AppointmentStatus.CONFIRMED.value)
        await seed.appointment(business, customer, scheduled_at=now + timedelta(days=3))

        candidates = await AppointmentRepository(db_session).get_reminder_candidates(
            now - timedelta(hours=1), now + timedelta(hours=24)
        )

        assert [c.id for c in candidates] == [inside.id]
        assert candidates[0].customer.phone == "+14155550123"
        assert candidates[0].business.name == "Bright Smile Dental"

    @pytest.mark.asyncio
    async def test_last_appointment_times(self, seed, db_session, now):
        """Test the latest scheduled_at is reported per customer."""
        business = await seed.business()
        customer = await seed.customer(business)
        await seed.appointment(business, customer, scheduled_at=now - timedelta(days=100))
        await seed.appointment(business, customer, scheduled_at=now - timedelta(days=40))

        latest = await AppointmentRepository(db_session).get_last_appointment_times(business.id)

        assert latest == {customer.id: now - timedelta(days=40)}

    @pytest.mark.asyncio
    async def test_customers_with_upcoming(self, seed, db_session, now):
        """Test future SCHEDULED and CONFIRMED appointments count as upcoming."""
        business = await seed.business()
        booked = await seed.customer(business, name="Booked")
        canceled = await seed.customer(business, name="Canceled", phone="+14155550124")
        await seed.appointment(
            business, booked, scheduled_at=now + timedelta(days=5),
            status=AppointmentStatus.CONFIRMED.value,
        )
        await seed.appointment(
            business, canceled, scheduled_at=now + timedelta(days=5),
            status=AppointmentStatus.CANCELED.value,
        )

        upcoming = await AppointmentRepository(db_session).get_customers_with_upcoming(
            business.id, now
        )

        assert upcoming == {booked.id}


class TestCampaignRepository:
    """Tests for CampaignRepository."""

    @pytest.mark.asyncio
    async def test_one_campaign_per_type(self, seed, db_session):
        """Test a second campaign of the same type is rejected."""
        business = await seed.business()
        await seed.campaign(business)

        with pytest.raises(CampaignAlreadyExistsError):
            await CampaignRepository(db_session).create_for_business(
                CampaignModel(
                    business_id=business.id,
                    campaign_type=CampaignType.RE_ENGAGEMENT.value,
                    name="Duplicate",
                )
            )

    @pytest.mark.asyncio
    async def test_create_applies_defaults(self, seed, db_session):
        """Test window and backpressure defaults on a new campaign."""
        business = await seed.business()

        campaign = await CampaignRepository(db_session).create_for_business(
            CampaignModel(
                business_id=business.id,
                campaign_type=CampaignType.REVIEW_COLLECTION.value,
                name="Reviews",
            )
        )

        assert campaign.call_window_start == "09:00"
        assert campaign.call_window_end == "17:00"
        assert campaign.allowed_days == "MON,TUE,WED,THU,FRI"
        assert campaign.max_concurrent_calls == 2
        assert campaign.min_minutes_between_calls == 5
        assert campaign.cycle_frequency_days == 30
        assert campaign.enabled is False

    @pytest.mark.asyncio
    async def test_get_enabled(self, seed, db_session):
        """Test disabled campaigns are not returned."""
        business = await seed.business()
        enabled = await seed.campaign(business)
        await seed.campaign(
            business, campaign_type=CampaignType.NO_SHOW_FOLLOWUP.value, enabled=False
        )

        campaigns = await CampaignRepository(db_session).get_enabled()

        assert [c.id for c in campaigns] == [enabled.id]

    @pytest.mark.asyncio
    async def test_due_queued_ordering(self, seed, db_session, now):
        """Test due calls come back earliest first and future ones are excluded."""
        business = await seed.business()
        customer = await seed.customer(business)
        campaign = await seed.campaign(business)
        later = await seed.campaign_call(campaign, customer, scheduled_for=now - timedelta(minutes=1))
        earlier = await seed.campaign_call(campaign, customer, scheduled_for=now - timedelta(hours=1))
        await seed.campaign_call(campaign, customer, scheduled_for=now + timedelta(hours=1))

        due = await CampaignCallRepository(db_session).get_due_queued(campaign.id, now)

        assert [c.id for c in due] == [earlier.id, later.id]


class TestMiscRepositories:
    """Tests for the remaining repositories."""

    @pytest.mark.asyncio
    async def test_get_or_raise(self, db_session):
        """Test missing records raise RecordNotFoundError."""
        from uuid import uuid4

        with pytest.raises(RecordNotFoundError):
            await CustomerRepository(db_session).get_or_raise(uuid4())

    @pytest.mark.asyncio
    async def test_customers_with_phone(self, seed, db_session):
        """Test customers without a phone are excluded."""
        business = await seed.business()
        reachable = await seed.customer(business)
        await seed.customer(business, name="No phone", phone=None)
        await seed.customer(business, name="Empty phone", phone="")

        customers = await CustomerRepository(db_session).get_with_phone(business.id)

        assert [c.id for c in customers] == [reachable.id]

    @pytest.mark.asyncio
    async def test_template_falls_back_to_other(self, seed, db_session):
        """Test a category without a template gets the OTHER one."""
        await seed.reminder_template(category="OTHER", greeting="Generic")
        await seed.reminder_template(category="SALON", greeting="Salon")

        repo = TemplateRepository(db_session)

        assert (await repo.get_reminder_template("SALON")).greeting == "Salon"
        assert (await repo.get_reminder_template("DENTAL")).greeting == "Generic"
        assert (await repo.get_reminder_template(None)).greeting == "Generic"

    @pytest.mark.asyncio
    async def test_call_log_lookups(self, seed, db_session):
        """Test call logs are found by provider id and room name."""
        business = await seed.business()
        log = await seed.call_log(business, provider_call_id="cc-1", room_name="room-1")

        repo = CallLogRepository(db_session)

        assert (await repo.get_by_provider_call_id("cc-1")).id == log.id
        assert (await repo.get_by_room_name("room-1")).id == log.id
        assert await repo.get_by_room_name("missing") is None
