"""Campaign evaluation phase.

Once per campaign cycle, turns eligible customers into QUEUED campaign
calls staggered across the campaign's future call windows.

Each campaign type plugs in a CandidateGenerator that decides who is
eligible; staggering and insertion are shared.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from outreach_agent.core.logging import get_logger
from outreach_agent.db.models.campaigns import (
    CampaignCallModel,
    CampaignCallStatus,
    CampaignModel,
    CampaignType,
)
from outreach_agent.db.models.core import (
    DEFAULT_TIMEZONE,
    AppointmentStatus,
    BusinessModel,
    CustomerModel,
)
from outreach_agent.db.repositories import (
    AppointmentRepository,
    CampaignCallRepository,
    CampaignRepository,
    CustomerRepository,
)
from outreach_agent.scheduling.eligibility import is_valid_phone
from outreach_agent.scheduling.window import (
    DAY_ABBREVIATIONS,
    parse_allowed_days,
    parse_time_to_minutes,
    resolve_timezone,
)

log = get_logger(__name__)

DEFAULT_DAYS_SINCE_LAST_APPOINTMENT = 30
DEFAULT_DAYS_SINCE_COMPLETED = 2
DEFAULT_DAYS_SINCE_NO_SHOW = 7


@dataclass
class Candidate:
    """A customer selected for a campaign call."""

    customer: CustomerModel


@dataclass
class EvaluationResult:
    """Outcome of one evaluation of one campaign."""

    campaign_id: str
    candidates: int = 0
    queued: int = 0
    claimed: bool = True
    next_run_at: datetime | None = None
    scheduled_for: list[datetime] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "campaign_id": self.campaign_id,
            "candidates": self.candidates,
            "queued": self.queued,
            "claimed": self.claimed,
            "next_run_at": self.next_run_at.isoformat() if self.next_run_at else None,
        }


# ============================================================================
# Candidate generators
# ============================================================================


class CandidateGenerator:
    """Selects eligible customers for one campaign type.

    Subclasses implement ``generate``. Helpers cover the exclusions every
    type shares: a dialable phone and no call in the current cycle.
    """

    campaign_type: CampaignType

    def __init__(self, session: AsyncSession):
        self.session = session
        self.customers = CustomerRepository(session)
        self.appointments = AppointmentRepository(session)
        self.campaign_calls = CampaignCallRepository(session)

    async def generate(
        self,
        business: BusinessModel,
        campaign: CampaignModel,
        settings: dict[str, Any],
        now: datetime,
    ) -> list[Candidate]:
        raise NotImplementedError

    async def dialable_customers(self, business_id) -> list[CustomerModel]:
        customers = await self.customers.get_with_phone(business_id)
        return [customer for customer in customers if is_valid_phone(customer.phone)]

    async def contacted_this_cycle(self, campaign: CampaignModel, now: datetime) -> set:
        cycle_start = now - timedelta(days=campaign.cycle_frequency_days)
        return await self.campaign_calls.get_recently_contacted(campaign.id, cycle_start)


class ReEngagementGenerator(CandidateGenerator):
    """Customers who have not been seen for a while.

    Eligible: last appointment at or before the cutoff (or none at all),
    no upcoming SCHEDULED/CONFIRMED appointment, not contacted this cycle.
    """

    campaign_type = CampaignType.RE_ENGAGEMENT

    async def generate(self, business, campaign, settings, now):
        days = int(settings.get("days_since_last_appointment") or DEFAULT_DAYS_SINCE_LAST_APPOINTMENT)
        cutoff = now - timedelta(days=days)

        last_seen = await self.appointments.get_last_appointment_times(business.id)
        upcoming = await self.appointments.get_customers_with_upcoming(business.id, now)
        contacted = await self.contacted_this_cycle(campaign, now)

        candidates = []
        for customer in await self.dialable_customers(business.id):
            last = last_seen.get(customer.id)
            if last is not None and last > cutoff:
                continue
            if customer.id in upcoming or customer.id in contacted:
                continue
            candidates.append(Candidate(customer=customer))
        return candidates


class ReviewCollectionGenerator(CandidateGenerator):
    """Customers with a recently completed appointment."""

    campaign_type = CampaignType.REVIEW_COLLECTION

    async def generate(self, business, campaign, settings, now):
        days = int(settings.get("days_since_completed") or DEFAULT_DAYS_SINCE_COMPLETED)
        recent = await self.appointments.get_customers_with_status_between(
            business.id, AppointmentStatus.COMPLETED, now - timedelta(days=days), now
        )
        contacted = await self.contacted_this_cycle(campaign, now)

        return [
            Candidate(customer=customer)
            for customer in await self.dialable_customers(business.id)
            if customer.id in recent and customer.id not in contacted
        ]


class NoShowFollowupGenerator(CandidateGenerator):
    """Customers who missed a recent appointment and have not rebooked."""

    campaign_type = CampaignType.NO_SHOW_FOLLOWUP

    async def generate(self, business, campaign, settings, now):
        days = int(settings.get("days_since_no_show") or DEFAULT_DAYS_SINCE_NO_SHOW)
        missed = await self.appointments.get_customers_with_status_between(
            business.id, AppointmentStatus.NO_SHOW, now - timedelta(days=days), now
        )
        upcoming = await self.appointments.get_customers_with_upcoming(business.id, now)
        contacted = await self.contacted_this_cycle(campaign, now)

        return [
            Candidate(customer=customer)
            for customer in await self.dialable_customers(business.id)
            if customer.id in missed
            and customer.id not in upcoming
            and customer.id not in contacted
        ]


GENERATORS: dict[str, type[CandidateGenerator]] = {
    generator.campaign_type.value: generator
    for generator in (ReEngagementGenerator, ReviewCollectionGenerator, NoShowFollowupGenerator)
}


# ============================================================================
# Staggering
# ============================================================================


def _allowed_dates(start: date, allowed: set[str]):
    """Yield allowed dates from ``start`` onwards (every date if none allowed)."""
    current = start
    for _ in range(3660):
        if not allowed or DAY_ABBREVIATIONS[current.weekday()] in allowed:
            yield current
        current += timedelta(days=1)


def stagger_schedule(
    count: int,
    window_start: str,
    window_end: str,
    min_spacing_minutes: int,
    allowed_days: str | None,
    tz: ZoneInfo,
    now: datetime,
) -> list[datetime]:
    """Spread ``count`` calls over upcoming call windows.

    Calls are spaced ``max(min_spacing, window // count)`` minutes apart
    starting at the window start, tomorrow in business-local time. A call
    whose offset runs past the window end moves to the next allowed day.

    Args:
        count: Number of calls to schedule
        window_start: Local window start "HH:MM"
        window_end: Local window end "HH:MM"
        min_spacing_minutes: Minimum minutes between consecutive calls
        allowed_days: Comma separated weekday abbreviations
        tz: Business timezone
        now: Current instant

    Returns:
        UTC instants, one per call, non-decreasing
    """
    if count <= 0:
        return []

    start = parse_time_to_minutes(window_start)
    end = parse_time_to_minutes(window_end)
    window = max(end - start, 1)
    interval = max(min_spacing_minutes, window // max(count, 1), 1)

    tomorrow = now.astimezone(tz).date() + timedelta(days=1)
    days = _allowed_dates(tomorrow, parse_allowed_days(allowed_days))
    day_dates: list[date] = []

    schedule = []
    for i in range(count):
        offset = i * interval
        day_offset = offset // window
        minute = start + offset % window
        while len(day_dates) <= day_offset:
            day_dates.append(next(days))
        local = datetime.combine(
            day_dates[day_offset], time(minute // 60, minute % 60), tzinfo=tz
        )
        schedule.append(local.astimezone(timezone.utc))
    return schedule


# ============================================================================
# Evaluator
# ============================================================================


class CampaignEvaluator:
    """Runs the evaluation phase for one campaign inside a session."""

    def __init__(self, session: AsyncSession, default_timezone: str = DEFAULT_TIMEZONE):
        self.session = session
        self.default_timezone = default_timezone

    async def evaluate(self, campaign: CampaignModel, now: datetime) -> EvaluationResult:
        """Queue calls for eligible customers and advance the cycle.

        Advancing the cycle is the first write and doubles as the claim: if
        another replica already moved ``next_run_at`` nothing is queued.
        Otherwise the cycle advances even when no candidate is found or the
        campaign type has no generator.
        """
        result = EvaluationResult(campaign_id=str(campaign.id))
        business = campaign.business
        next_run_at = now + timedelta(days=campaign.cycle_frequency_days)

        claimed = await CampaignRepository(self.session).claim_evaluation(
            campaign.id,
            seen_next_run_at=campaign.next_run_at,
            last_run_at=now,
            next_run_at=next_run_at,
        )
        if not claimed:
            result.claimed = False
            log.info("Campaign already evaluated elsewhere", campaign_id=str(campaign.id))
            return result
        result.next_run_at = next_run_at

        generator_class = GENERATORS.get(campaign.campaign_type)
        if generator_class is None:
            log.warning(
                "No candidate generator for campaign type",
                campaign_id=str(campaign.id),
                campaign_type=campaign.campaign_type,
            )
            candidates: list[Candidate] = []
        else:
            generator = generator_class(self.session)
            candidates = await generator.generate(business, campaign, campaign.settings or {}, now)
        result.candidates = len(candidates)

        if candidates:
            tz = resolve_timezone(business.timezone if business else None, self.default_timezone)
            schedule = stagger_schedule(
                len(candidates),
                campaign.call_window_start,
                campaign.call_window_end,
                campaign.min_minutes_between_calls,
                campaign.allowed_days,
                tz,
                now,
            )
            calls = CampaignCallRepository(self.session)
            for candidate, scheduled_for in zip(candidates, schedule):
                await calls.create(
                    CampaignCallModel(
                        campaign_id=campaign.id,
                        customer_id=candidate.customer.id,
                        business_id=campaign.business_id,
                        status=CampaignCallStatus.QUEUED.value,
                        scheduled_for=scheduled_for,
                    )
                )
            result.queued = len(schedule)
            result.scheduled_for = schedule

        log.info(
            "Campaign evaluated",
            campaign_id=str(campaign.id),
            campaign_type=campaign.campaign_type,
            candidates=result.candidates,
            queued=result.queued,
            next_run_at=result.next_run_at.isoformat(),
        )
        return result
