"""Campaign dispatch loop.

For every enabled campaign whose local call window is open:

Dispatch phase:
- Take QUEUED calls that are due, earliest first
- Respect max_concurrent_calls and min_minutes_between_calls
- Claim each call (QUEUED -> IN_PROGRESS) and place it

Evaluation phase (once per cycle, when next_run_at has passed):
- Queue calls for newly eligible customers (see evaluation.py)

One campaign's failure never affects the others.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from outreach_agent.config import SchedulerSettings
from outreach_agent.core.logging import get_logger
from outreach_agent.db.models.campaigns import CampaignCallModel, CampaignModel, CampaignType
from outreach_agent.db.models.core import CallLogModel
from outreach_agent.db.repositories import (
    CallLogRepository,
    CampaignCallRepository,
    CampaignRepository,
    TemplateRepository,
)
from outreach_agent.scheduling.base import LoopConfig, PeriodicLoop
from outreach_agent.scheduling.eligibility import is_valid_phone
from outreach_agent.scheduling.evaluation import CampaignEvaluator, EvaluationResult
from outreach_agent.scheduling.reminders import DispatchReport
from outreach_agent.scheduling.window import is_within_window
from outreach_agent.telephony.base import CallContext, CallRequest, VoiceProvider

log = get_logger(__name__)

INVALID_PHONE_REASON = "Invalid phone number"
NO_CONVERSATION_REASON = "conversational provider not configured"


@dataclass
class CampaignTickReport:
    """Counters for one campaign loop pass."""

    campaigns: int = 0
    outside_window: int = 0
    errors: int = 0
    dispatch: DispatchReport = field(default_factory=DispatchReport)
    evaluations: list[EvaluationResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "campaigns": self.campaigns,
            "outside_window": self.outside_window,
            "errors": self.errors,
            "dispatch": self.dispatch.to_dict(),
            "evaluations": [evaluation.to_dict() for evaluation in self.evaluations],
        }


def campaign_context(campaign: CampaignModel, call: CampaignCallModel) -> CallContext:
    business = campaign.business
    customer = call.customer
    campaign_type = CampaignType(campaign.campaign_type)
    return CallContext(
        call_type=campaign_type.call_type.value,
        business_id=str(campaign.business_id),
        customer_id=str(call.customer_id),
        campaign_call_id=str(call.id),
        campaign_type=campaign_type.value,
        customer_name=customer.name if customer else None,
        business_name=business.name if business else None,
        business_category=business.category if business else None,
        business_timezone=business.timezone if business else None,
        voice=business.voice_preference if business else None,
    )


class CampaignDispatcher(PeriodicLoop):
    """Dispatches queued campaign calls and runs due evaluations."""

    name = "campaigns"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        provider: VoiceProvider,
        settings: SchedulerSettings | None = None,
    ):
        self.settings = settings or SchedulerSettings()
        super().__init__(
            LoopConfig(
                interval_seconds=self.settings.campaign_interval_seconds,
                startup_delay_seconds=self.settings.campaign_startup_delay_seconds,
                stop_timeout_seconds=self.settings.stop_timeout_seconds,
            )
        )
        self.session_factory = session_factory
        self.provider = provider

    async def tick(self, now: datetime) -> CampaignTickReport:
        report = CampaignTickReport()

        async with self.session_factory() as session:
            campaigns = await CampaignRepository(session).get_enabled()
        report.campaigns = len(campaigns)

        if not campaigns:
            log.debug("No enabled campaigns")
            return report

        for campaign in campaigns:
            try:
                await self._process_campaign(campaign, now, report)
            except Exception as e:
                report.errors += 1
                log.error(
                    "Campaign processing failed",
                    campaign_id=str(campaign.id),
                    error=str(e),
                    exc_info=True,
                )

        return report

    async def _process_campaign(
        self,
        campaign: CampaignModel,
        now: datetime,
        report: CampaignTickReport,
    ) -> None:
        business_timezone = campaign.business.timezone if campaign.business else None
        if not is_within_window(
            campaign, business_timezone, now, self.settings.default_timezone
        ):
            report.outside_window += 1
            log.debug("Outside call window", campaign_id=str(campaign.id))
            return

        await self._dispatch(campaign, now, report.dispatch)

        if campaign.next_run_at is None or campaign.next_run_at <= now:
            async with self.session_factory() as session:
                evaluation = await CampaignEvaluator(
                    session, self.settings.default_timezone
                ).evaluate(campaign, now)
                await session.commit()
            if evaluation.claimed:
                report.evaluations.append(evaluation)

    async def _dispatch(self, campaign: CampaignModel, now: datetime, report: DispatchReport) -> None:
        campaign_id = str(campaign.id)

        async with self.session_factory() as session:
            calls = CampaignCallRepository(session)
            queued = await calls.get_due_queued(campaign.id, now)
            if not queued:
                return
            in_progress = await calls.count_in_progress(campaign.id)
            last_started = await calls.get_last_started_at(campaign.id)
        report.candidates += len(queued)

        spacing = timedelta(minutes=campaign.min_minutes_between_calls)
        if last_started is not None and now - last_started < spacing:
            log.debug(
                "Too soon since last dispatch",
                campaign_id=campaign_id,
                seconds_since_last=int((now - last_started).total_seconds()),
            )
            return

        for call in queued:
            if in_progress >= campaign.max_concurrent_calls:
                log.debug("Max concurrent calls reached", campaign_id=campaign_id)
                break
            report.eligible += 1

            phone = call.customer.phone if call.customer else None
            if not is_valid_phone(phone):
                async with self.session_factory() as session:
                    await CampaignCallRepository(session).mark_skipped(call.id, INVALID_PHONE_REASON)
                    await session.commit()
                report.skipped += 1
                continue

            async with self.session_factory() as session:
                claimed = await CampaignCallRepository(session).claim(call.id, now)
                await session.commit()
            if not claimed:
                report.skipped += 1
                continue
            report.claimed += 1

            if not self.provider.handles_campaigns:
                async with self.session_factory() as session:
                    await CampaignCallRepository(session).mark_failed(call.id, NO_CONVERSATION_REASON)
                    await session.commit()
                log.warning(
                    "Campaign call failed, no conversational provider",
                    campaign_id=campaign_id,
                    campaign_call_id=str(call.id),
                )
                report.failed += 1
                continue

            try:
                await self._place_call(campaign, call, phone)
            except Exception as e:
                report.failed += 1
                log.error(
                    "Campaign call failed, requeueing",
                    campaign_id=campaign_id,
                    campaign_call_id=str(call.id),
                    error=str(e),
                    exc_info=True,
                )
                async with self.session_factory() as session:
                    await CampaignCallRepository(session).release(call.id)
                    await session.commit()
                continue

            in_progress += 1
            report.dispatched += 1

    async def _place_call(self, campaign: CampaignModel, call: CampaignCallModel, phone: str) -> None:
        context = campaign_context(campaign, call)

        async with self.session_factory() as session:
            template = await TemplateRepository(session).get_campaign_template(
                campaign.campaign_type, context.business_category
            )
            request = CallRequest(
                to=phone,
                context=context,
                reference=str(call.id),
                template=template.to_dict() if template else None,
                voice=context.voice,
                extra={"campaign_id": str(campaign.id), "settings": campaign.settings or {}},
            )

            result = await self.provider.dial(request)

            await CallLogRepository(session).create(
                CallLogModel(
                    business_id=campaign.business_id,
                    customer_id=call.customer_id,
                    campaign_call_id=call.id,
                    call_type=context.call_type,
                    provider_call_id=result.call_id,
                    room_name=result.room_name,
                )
            )
            await session.commit()

        log.info(
            "Campaign call placed",
            campaign_id=str(campaign.id),
            campaign_call_id=str(call.id),
            room_name=result.room_name,
            call_id=result.call_id,
        )
