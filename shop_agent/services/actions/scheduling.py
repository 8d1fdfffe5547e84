"""Actions that defer work to the scheduled task queue."""

from typing import Any, Dict, List

from shop_agent.domain.results import ServiceResult
from .base import BaseAction, EntityRef, is_blank, parse_schedule_time, to_float

TASK_FOLLOWUP = "followup"
TASK_PRICE_CHANGE = "price_change"


class ScheduleFollowupAction(BaseAction):
    action_type = "schedule_followup"
    name = "Schedule Followup"
    description = "Schedule a future action or reminder"
    required_fields = ("schedule_time", "action")
    optional_fields = ("customer_id", "product_id", "message")
    aliases = {
        "schedule_time": ("delay_days", "follow_up_date", "followup_date"),
        "action": ("followup_action", "follow_up_action"),
        "customer_id": (EntityRef("customer"),),
        "product_id": (EntityRef("product"),),
    }

    def check(self, values: Dict[str, Any]) -> List[str]:
        if parse_schedule_time(values["schedule_time"]) is None:
            return ["schedule_time must be a date, a datetime or a number of days"]
        return []

    def perform(self, values: Dict[str, Any]) -> ServiceResult:
        scheduled_at = parse_schedule_time(values["schedule_time"])
        task_data = {k: v for k, v in values.items() if k != "schedule_time"}
        task = self.tasks.add(TASK_FOLLOWUP, task_data, scheduled_at)
        return ServiceResult.ok(
            {"id": task.id, "scheduled_at": scheduled_at.isoformat(), "action": values["action"]},
            message="Followup scheduled",
        )


class SchedulePriceChangeAction(BaseAction):
    action_type = "schedule_price_change"
    name = "Schedule Price Change"
    description = "Schedule a future price change for a product"
    required_fields = ("product_id", "new_price", "schedule_time")
    optional_fields = ("revert_time", "reason")
    aliases = {
        "product_id": (EntityRef("product"), "id"),
        "new_price": ("price",),
        "schedule_time": ("effective_date", "start_date"),
    }
    default_requires_approval = True

    def check(self, values: Dict[str, Any]) -> List[str]:
        errors: List[str] = []
        self._check_id(values, "product_id", errors)
        price = to_float(values["new_price"])
        if price is None or price < 0:
            errors.append("new_price must be a non-negative number")
        if parse_schedule_time(values["schedule_time"]) is None:
            errors.append("schedule_time must be a date, a datetime or a number of days")
        if not is_blank(values.get("revert_time")) and parse_schedule_time(values["revert_time"]) is None:
            errors.append("Invalid revert_time")
        return errors

    def perform(self, values: Dict[str, Any]) -> ServiceResult:
        product_id = int(values["product_id"])
        product = self._require_product(product_id)
        scheduled_at = parse_schedule_time(values["schedule_time"])
        revert_at = parse_schedule_time(values["revert_time"]) if not is_blank(values.get("revert_time")) else None

        task = self.tasks.add(TASK_PRICE_CHANGE, {
            "product_id": product_id,
            "current_price": product.get("regular_price", product.get("price")),
            "new_price": to_float(values["new_price"]),
            "revert_time": revert_at.isoformat() if revert_at else None,
            "reason": str(values.get("reason") or ""),
        }, scheduled_at)
        return ServiceResult.ok(
            {"id": task.id, "product_id": product_id, "scheduled_at": scheduled_at.isoformat()},
            message="Price change scheduled",
        )
