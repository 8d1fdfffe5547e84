"""Runs deferred work created by the scheduling actions."""

from datetime import datetime
from typing import Any, Callable, Dict, Optional

from shop_agent.core.exceptions import NotFoundError, ShopAgentException, ValidationError
from shop_agent.core.logging_config import get_logger
from shop_agent.domain.results import ServiceResult
from shop_agent.models import ScheduledTask, TaskStatus
from shop_agent.repositories.task_repo import ScheduledTaskRepository
from shop_agent.services.actions.base import parse_schedule_time, to_float, to_int
from shop_agent.services.actions.executor import ActionExecutor
from shop_agent.services.actions.scheduling import TASK_FOLLOWUP, TASK_PRICE_CHANGE

logger = get_logger(__name__)

TASK_CAMPAIGN = "campaign"
TASK_INVENTORY_CHECK = "inventory_check"

FOLLOWUP_SUBJECT = "A follow-up from our shop"


class ScheduledTaskService:

    def __init__(self, executor: ActionExecutor, repo: Optional[ScheduledTaskRepository] = None):
        self.executor = executor
        self.store = executor.registry.store
        self.repo = repo or ScheduledTaskRepository()
        self.handlers: Dict[str, Callable[[Dict[str, Any]], ServiceResult]] = {
            TASK_PRICE_CHANGE: self.execute_price_change,
            TASK_FOLLOWUP: self.execute_followup,
            TASK_CAMPAIGN: self.execute_campaign,
            TASK_INVENTORY_CHECK: self.execute_inventory_check,
        }

    def schedule(self, task_type: str, data: Dict[str, Any], when: Any) -> ScheduledTask:
        if task_type not in self.handlers:
            raise ValidationError(f"Unknown task type: {task_type}", field="task_type")
        scheduled_at = parse_schedule_time(when)
        if scheduled_at is None:
            raise ValidationError(f"Invalid schedule time: {when}", field="scheduled_at")
        return self.repo.add(task_type, data, scheduled_at)

    def run_due_tasks(self, now: Optional[datetime] = None, limit: int = 20) -> Dict[str, int]:
        """Execute pending tasks whose time has come. Each task runs at most once."""
        summary = {"executed": 0, "failed": 0, "skipped": 0}
        for task in self.repo.due(now, limit):
            if not self.repo.claim(task.id):
                summary["skipped"] += 1
                continue

            handler = self.handlers.get(task.task_type)
            if handler is None:
                outcome = ServiceResult.fail(ValidationError(f"Unknown task type: {task.task_type}"))
            else:
                try:
                    outcome = handler(task.task_data or {})
                except ShopAgentException as e:
                    outcome = ServiceResult.fail(e)

            status = TaskStatus.COMPLETED if outcome.success else TaskStatus.FAILED
            self.repo.finish(task.id, status.value, outcome.to_envelope())
            summary["executed" if outcome.success else "failed"] += 1
            logger.info(
                "Scheduled task finished",
                task_id=task.id,
                task_type=task.task_type,
                status=status.value,
                result_message=outcome.message,
            )
        return summary

    # Handlers

    def execute_price_change(self, data: Dict[str, Any]) -> ServiceResult:
        product_id = to_int(data.get("product_id"))
        new_price = to_float(data.get("new_price"))
        if not product_id or new_price is None or new_price <= 0:
            return ServiceResult.fail(ValidationError("Invalid price change data"))

        product = self.store.get_product(product_id)
        if product is None:
            return ServiceResult.fail(NotFoundError("Product", product_id))

        changes: Dict[str, Any] = {"regular_price": new_price}
        sale_price = to_float(product.get("sale_price"))
        if sale_price and new_price < sale_price:
            changes["sale_price"] = None
        self.store.update_product(product_id, changes)

        revert_at = parse_schedule_time(data["revert_time"]) if data.get("revert_time") else None
        old_price = to_float(data.get("current_price"))
        if revert_at is not None and old_price:
            self.repo.add(TASK_PRICE_CHANGE, {
                "product_id": product_id,
                "current_price": new_price,
                "new_price": old_price,
                "reason": "Revert scheduled price change",
            }, revert_at)

        return ServiceResult.ok(
            {"product_id": product_id, "old_price": product.get("regular_price"), "new_price": new_price},
            message="Price changed",
        )

    def execute_followup(self, data: Dict[str, Any]) -> ServiceResult:
        message = data.get("message")
        if not message:
            return ServiceResult.fail(ValidationError("Followup message is empty"))

        action = str(data.get("action") or "").lower()
        channel = str(data.get("followup_type") or data.get("channel") or ("sms" if "sms" in action else "email")).lower()
        customer_id = data.get("customer_id")
        if channel == "sms":
            return self.executor.execute("send_sms", {
                "phone": data.get("phone"),
                "customer_id": customer_id,
                "message": message,
            })
        return self.executor.execute("send_email", {
            "email": data.get("email"),
            "customer_id": customer_id,
            "subject": data.get("subject") or FOLLOWUP_SUBJECT,
            "message": message,
        })

    def execute_campaign(self, data: Dict[str, Any]) -> ServiceResult:
        return self.executor.execute("create_campaign", data)

    def execute_inventory_check(self, data: Dict[str, Any]) -> ServiceResult:
        product_id = to_int(data.get("product_id"))
        threshold = to_int(data.get("threshold"))
        threshold = 5 if threshold is None else threshold
        product = self.store.get_product(product_id) if product_id else None
        if product is None:
            return ServiceResult.fail(NotFoundError("Product", data.get("product_id")))

        stock = product.get("stock_quantity")
        if stock is None or int(stock) > threshold:
            return ServiceResult.ok({"product_id": product_id, "stock_quantity": stock}, message="Stock is fine")
        return self.executor.execute("inventory_alert", {"product_id": product_id, "threshold": threshold})

    def statistics(self) -> Dict[str, Any]:
        pending = self.repo.list(status=TaskStatus.PENDING.value, limit=1000)
        by_type: Dict[str, int] = {}
        for task in pending:
            by_type[task.task_type] = by_type.get(task.task_type, 0) + 1
        return {"pending": len(pending), "by_type": by_type}
