"""Campaign action."""

from typing import Any, Dict, List

from shop_agent.domain.results import ServiceResult
from .base import BaseAction, to_float


class CreateCampaignAction(BaseAction):
    action_type = "create_campaign"
    name = "Create Campaign"
    description = "Create a marketing campaign for an audience segment"
    required_fields = ("campaign_name", "target_audience")
    optional_fields = ("message", "channels", "budget")
    aliases = {
        "campaign_name": ("name", "title"),
        "target_audience": ("audience", "segment"),
        "message": ("content", "body"),
    }

    def check(self, values: Dict[str, Any]) -> List[str]:
        budget = values.get("budget")
        if budget not in (None, "") and (to_float(budget) is None or to_float(budget) < 0):
            return ["budget must be a non-negative number"]
        return []

    def perform(self, values: Dict[str, Any]) -> ServiceResult:
        channels = values.get("channels") or []
        if isinstance(channels, str):
            channels = [c.strip() for c in channels.split(",") if c.strip()]
        campaign = {
            "name": str(values["campaign_name"]).strip(),
            "audience": str(values["target_audience"]).strip(),
            "message": str(values.get("message") or ""),
            "channels": list(channels),
            "budget": to_float(values.get("budget")) or 0,
        }
        campaign_id = self.store.create_campaign(campaign)
        return ServiceResult.ok(dict(campaign, campaign_id=campaign_id), message="Campaign created")
