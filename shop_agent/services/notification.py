"""Admin notifications. Fire-and-forget: a failed notification is logged, never raised."""

from datetime import date
from typing import Any, Dict, Optional

from shop_agent.core.logging_config import get_logger
from shop_agent.services.actions.base import render_email
from shop_agent.services.settings_store import SettingsStore
from shop_agent.services.store import StoreGateway

logger = get_logger(__name__)

ACTION_LABELS = {
    "send_email": "Send email",
    "send_sms": "Send SMS",
    "create_discount": "Create discount",
    "update_product": "Update product",
    "create_campaign": "Create campaign",
    "schedule_followup": "Schedule followup",
    "create_bundle": "Create bundle",
    "inventory_alert": "Inventory alert",
    "loyalty_reward": "Loyalty reward",
    "schedule_price_change": "Schedule price change",
}


class NotificationService:

    def __init__(self, store: StoreGateway, settings_store: Optional[SettingsStore] = None):
        self.store = store
        self.settings = settings_store or SettingsStore()

    def _send(self, subject: str, message: str) -> bool:
        recipient = self.settings.get("notify_admin_email")
        if not recipient:
            logger.debug("No notification recipient configured", subject=subject)
            return False
        try:
            sent = bool(self.store.send_email(recipient, subject, render_email(subject, message, sender="Shop Agent")))
        except Exception as e:
            logger.warning("Notification not delivered", subject=subject, error=str(e))
            return False
        if sent:
            logger.info("Notification sent", to=recipient, subject=subject)
        else:
            logger.warning("Notification not delivered", to=recipient, subject=subject)
        return sent

    def notify_high_priority_action(self, action: Dict[str, Any]) -> bool:
        if not self.settings.is_notification_enabled("high_priority"):
            return False

        action_type = action.get("action_type", "")
        label = ACTION_LABELS.get(action_type, action_type or "unknown")
        data = action.get("action_data") or {}
        lines = [
            f"A high priority action was suggested: {label}.",
            f"Priority: {action.get('priority_score')}",
            f"Status: {action.get('status')}",
        ]
        if data.get("entity_id") is not None:
            lines.append(f"Entity: {data.get('entity_type')} #{data.get('entity_id')}")
        if data.get("reasoning"):
            lines.append(f"Reasoning: {data['reasoning']}")
        if action.get("requires_approval"):
            lines.append("This action is waiting for approval.")
        return self._send(f"[Shop Agent] High priority action: {label}", "\n\n".join(lines))

    def notify_error(self, message: str, context: Optional[Dict[str, Any]] = None) -> bool:
        if not self.settings.is_notification_enabled("errors"):
            return False
        parts = [message] + [f"{key}: {value}" for key, value in (context or {}).items()]
        return self._send("[Shop Agent] Error report", "\n\n".join(parts))

    def send_daily_summary(self, stats: Dict[str, Any]) -> bool:
        if not self.settings.is_notification_enabled("daily_summary"):
            return False
        parts = [f"{key.replace('_', ' ').capitalize()}: {value}" for key, value in stats.items()]
        return self._send(f"[Shop Agent] Daily summary - {date.today().isoformat()}", "\n\n".join(parts))
