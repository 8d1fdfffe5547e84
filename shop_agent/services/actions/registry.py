"""Closed set of action kinds and their implementations."""

from enum import Enum
from typing import Dict, List, Optional, Type

from shop_agent.core.exceptions import ValidationError
from shop_agent.repositories.task_repo import ScheduledTaskRepository
from shop_agent.services.settings_store import SettingsStore
from shop_agent.services.store import StoreGateway
from .base import BaseAction
from .catalog import (
    CreateBundleAction, CreateDiscountAction, InventoryAlertAction, LoyaltyRewardAction, UpdateProductAction,
)
from .marketing import CreateCampaignAction
from .messaging import SendEmailAction, SendSmsAction
from .scheduling import ScheduleFollowupAction, SchedulePriceChangeAction


class ActionType(str, Enum):
    SEND_EMAIL = "send_email"
    SEND_SMS = "send_sms"
    CREATE_DISCOUNT = "create_discount"
    UPDATE_PRODUCT = "update_product"
    CREATE_CAMPAIGN = "create_campaign"
    SCHEDULE_FOLLOWUP = "schedule_followup"
    CREATE_BUNDLE = "create_bundle"
    INVENTORY_ALERT = "inventory_alert"
    LOYALTY_REWARD = "loyalty_reward"
    SCHEDULE_PRICE_CHANGE = "schedule_price_change"

    @classmethod
    def parse(cls, value: str) -> Optional["ActionType"]:
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


ACTION_CLASSES: Dict[ActionType, Type[BaseAction]] = {
    ActionType.SEND_EMAIL: SendEmailAction,
    ActionType.SEND_SMS: SendSmsAction,
    ActionType.CREATE_DISCOUNT: CreateDiscountAction,
    ActionType.UPDATE_PRODUCT: UpdateProductAction,
    ActionType.CREATE_CAMPAIGN: CreateCampaignAction,
    ActionType.SCHEDULE_FOLLOWUP: ScheduleFollowupAction,
    ActionType.CREATE_BUNDLE: CreateBundleAction,
    ActionType.INVENTORY_ALERT: InventoryAlertAction,
    ActionType.LOYALTY_REWARD: LoyaltyRewardAction,
    ActionType.SCHEDULE_PRICE_CHANGE: SchedulePriceChangeAction,
}

# Every kind needs exactly one implementation whose declared type matches its key
_missing = set(ActionType) - set(ACTION_CLASSES)
if _missing:
    raise RuntimeError(f"Action types without implementation: {sorted(t.value for t in _missing)}")
for _kind, _cls in ACTION_CLASSES.items():
    if _cls.action_type != _kind.value:
        raise RuntimeError(f"{_cls.__name__} declares '{_cls.action_type}' but is registered as '{_kind.value}'")


class ActionRegistry:
    """Builds action handlers bound to one store, settings store and task queue."""

    def __init__(
        self,
        store: StoreGateway,
        settings_store: Optional[SettingsStore] = None,
        tasks: Optional[ScheduledTaskRepository] = None,
    ):
        self.store = store
        self.settings = settings_store or SettingsStore()
        self.tasks = tasks or ScheduledTaskRepository()

    def get(self, action_type: str) -> BaseAction:
        kind = ActionType.parse(action_type)
        if kind is None:
            raise ValidationError(f"Unknown action type: {action_type}", field="action_type")
        return ACTION_CLASSES[kind](self.store, self.settings, self.tasks)

    def all(self) -> List[BaseAction]:
        return [cls(self.store, self.settings, self.tasks) for cls in ACTION_CLASSES.values()]

    def available(self) -> Dict[str, Dict]:
        return {action.action_type: action.get_meta() for action in self.all()}

    def enabled(self) -> Dict[str, Dict]:
        return {k: meta for k, meta in self.available().items() if meta["enabled"]}

    def validate(self, action_type: str, data: Dict) -> Dict:
        kind = ActionType.parse(action_type)
        if kind is None:
            return {"valid": False, "errors": [f"Unknown action type: {action_type}"]}
        return self.get(kind.value).validate(data)
