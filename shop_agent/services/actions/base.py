"""
Base class for action types.

An action receives a loose key/value payload (usually produced by an LLM), so
every type declares, per logical field, an ordered list of alternative keys.
``normalize`` resolves them once; ``validate`` and ``execute`` only ever see
the canonical field names.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from jinja2 import Environment, select_autoescape

from shop_agent.core.exceptions import NotFoundError, ShopAgentException, ValidationError
from shop_agent.core.logging_config import get_logger
from shop_agent.domain.results import ServiceResult
from shop_agent.repositories.task_repo import ScheduledTaskRepository
from shop_agent.services.settings_store import SettingsStore
from shop_agent.services.store import StoreGateway

logger = get_logger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_templates = Environment(autoescape=select_autoescape(default_for_string=True))

EMAIL_TEMPLATE = _templates.from_string("""<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <title>{{ subject }}</title>
</head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
    <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
        <h2 style="color: #2c3e50;">{{ subject }}</h2>
        <div style="margin: 20px 0;">
            {% for paragraph in paragraphs %}<p>{{ paragraph }}</p>
            {% endfor %}
        </div>
        <hr style="border: none; border-top: 1px solid #eee; margin: 20px 0;">
        <p style="font-size: 12px; color: #999;">This email was sent by {{ sender }}</p>
    </div>
</body>
</html>""")


def render_email(subject: str, message: str, sender: str = "your shop") -> str:
    paragraphs = [p.strip() for p in re.split(r"\n\s*\n", message or "") if p.strip()]
    return EMAIL_TEMPLATE.render(subject=subject, paragraphs=paragraphs, sender=sender)


@dataclass(frozen=True)
class EntityRef:
    """Alias meaning "``entity_id`` when ``entity_type`` equals ``kind``"."""
    kind: str

    def resolve(self, data: Dict[str, Any]) -> Any:
        if str(data.get("entity_type") or "").lower() == self.kind:
            return data.get("entity_id")
        return None


AliasKey = Union[str, EntityRef]


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip()) or value == []


def to_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or is_blank(value):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def to_int(value: Any) -> Optional[int]:
    number = to_float(value)
    return int(number) if number is not None else None


def parse_schedule_time(value: Any, now: Optional[datetime] = None) -> Optional[datetime]:
    """A datetime, an ISO date/datetime string, or a number of days from now."""
    now = now or datetime.utcnow()
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    days = to_float(value)
    if days is not None:
        return now + timedelta(days=days)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed.replace(tzinfo=None)
    return None


class BaseAction(ABC):
    action_type: str = ""
    name: str = ""
    description: str = ""
    required_fields: Tuple[str, ...] = ()
    optional_fields: Tuple[str, ...] = ()
    aliases: Dict[str, Tuple[AliasKey, ...]] = {}
    default_requires_approval: bool = False

    def __init__(
        self,
        store: StoreGateway,
        settings_store: SettingsStore,
        tasks: Optional[ScheduledTaskRepository] = None,
    ):
        self.store = store
        self.settings = settings_store
        self.tasks = tasks or ScheduledTaskRepository()

    def normalize(self, data: Dict[str, Any]) -> Dict[str, Any]:
        values = dict(data or {})
        for field, keys in self.aliases.items():
            if not is_blank(values.get(field)):
                continue
            for key in keys:
                candidate = key.resolve(values) if isinstance(key, EntityRef) else values.get(key)
                if not is_blank(candidate):
                    values[field] = candidate
                    break
        return values

    def check(self, values: Dict[str, Any]) -> List[str]:
        """Type-specific checks on normalized values."""
        return []

    def _errors(self, values: Dict[str, Any]) -> List[str]:
        errors = [f"Missing required field: {f}" for f in self.required_fields if is_blank(values.get(f))]
        if errors:
            return errors
        return self.check(values)

    def validate(self, data: Dict[str, Any]) -> Dict[str, Any]:
        errors = self._errors(self.normalize(data))
        return {"valid": not errors, "errors": errors}

    @abstractmethod
    def perform(self, values: Dict[str, Any]) -> ServiceResult:
        """Run the action against the domain mutators. ``values`` are validated."""

    def execute(self, data: Dict[str, Any]) -> ServiceResult:
        values = self.normalize(data)
        errors = self._errors(values)
        if errors:
            return ServiceResult.fail(
                ValidationError(f"Validation failed: {', '.join(errors)}", errors=errors),
                errors=errors,
            )

        try:
            return self.perform(values)
        except ShopAgentException as e:
            logger.warning("Action failed", action_type=self.action_type, error_code=e.error_code, error=e.message)
            return ServiceResult.fail(e)
        except Exception as e:
            logger.exception("Action raised unexpectedly", action_type=self.action_type)
            return ServiceResult.fail(ShopAgentException(
                f"{self.name} failed ({type(e).__name__})",
                error_code="ACTION_FAILED",
            ))

    def requires_approval(self) -> bool:
        return self.default_requires_approval or self.action_type in self.settings.get_list("actions_require_approval")

    def is_enabled(self) -> bool:
        return self.action_type in self.settings.get_list("actions_enabled_types")

    def get_meta(self) -> Dict[str, Any]:
        return {
            "type": self.action_type,
            "name": self.name,
            "description": self.description,
            "required_fields": list(self.required_fields),
            "optional_fields": list(self.optional_fields),
            "aliases": {
                field: [k if isinstance(k, str) else f"entity_id[{k.kind}]" for k in keys]
                for field, keys in self.aliases.items()
            },
            "requires_approval": self.requires_approval(),
            "enabled": self.is_enabled(),
        }

    # Shared lookups

    def _require_product(self, product_id: Any) -> Dict[str, Any]:
        product = self.store.get_product(int(product_id))
        if product is None:
            raise NotFoundError("Product", product_id)
        return product

    def _require_customer(self, customer_id: Any) -> Dict[str, Any]:
        customer = self.store.get_customer(int(customer_id))
        if customer is None:
            raise NotFoundError("Customer", customer_id)
        return customer

    @staticmethod
    def _check_positive(values: Dict[str, Any], field: str, errors: List[str]) -> Optional[float]:
        number = to_float(values.get(field))
        if number is None:
            errors.append(f"{field} must be a number")
        elif number <= 0:
            errors.append(f"{field} must be greater than 0")
        return number

    @staticmethod
    def _check_id(values: Dict[str, Any], field: str, errors: List[str]) -> Optional[int]:
        number = to_int(values.get(field))
        if number is None or number <= 0:
            errors.append(f"{field} must be a positive integer")
            return None
        return number

    @staticmethod
    def _id_list(value: Any) -> Sequence[Any]:
        if isinstance(value, str):
            return [v.strip() for v in value.split(",") if v.strip()]
        if isinstance(value, (list, tuple)):
            return list(value)
        return [value]
