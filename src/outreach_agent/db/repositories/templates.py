"""Template lookups with category fallback."""
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from outreach_agent.db.models.core import BusinessCategory
from outreach_agent.db.models.templates import CampaignTemplateModel, ReminderTemplateModel

FALLBACK_CATEGORY = BusinessCategory.OTHER.value


class TemplateRepository:
    """Resolves script templates for a business category.

    A category without its own template falls back to the OTHER template;
    None means no template exists at all and built-in text is used.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_reminder_template(self, category: str | None) -> ReminderTemplateModel | None:
        category = category or FALLBACK_CATEGORY
        template = await self._reminder(category)
        if template is None and category != FALLBACK_CATEGORY:
            template = await self._reminder(FALLBACK_CATEGORY)
        return template

    async def get_campaign_template(
        self,
        campaign_type: str,
        category: str | None,
    ) -> CampaignTemplateModel | None:
        category = category or FALLBACK_CATEGORY
        template = await self._campaign(campaign_type, category)
        if template is None and category != FALLBACK_CATEGORY:
            template = await self._campaign(campaign_type, FALLBACK_CATEGORY)
        return template

    async def _reminder(self, category: str) -> ReminderTemplateModel | None:
        stmt = select(ReminderTemplateModel).where(ReminderTemplateModel.category == category)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def _campaign(self, campaign_type: str, category: str) -> CampaignTemplateModel | None:
        stmt = (
            select(CampaignTemplateModel)
            .where(CampaignTemplateModel.campaign_type == campaign_type)
            .where(CampaignTemplateModel.business_category == category)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()
