"""Customer messaging actions: email and SMS."""

import re
import secrets
from datetime import datetime
from typing import Any, Dict, List, Optional

from shop_agent.core.exceptions import TransportError, ValidationError
from shop_agent.domain.results import ServiceResult
from .base import BaseAction, EntityRef, EMAIL_RE, is_blank, render_email


class SendEmailAction(BaseAction):
    action_type = "send_email"
    name = "Send Email"
    description = "Send an email to a customer"
    required_fields = ("subject", "message")
    optional_fields = ("email", "customer_id", "template")
    aliases = {
        "email": ("customer_email", "to"),
        "message": ("body", "content"),
        "customer_id": (EntityRef("customer"), "user_id"),
    }

    def _recipient(self, values: Dict[str, Any]) -> Optional[str]:
        if not is_blank(values.get("email")):
            return str(values["email"]).strip()
        if not is_blank(values.get("customer_id")):
            customer = self._require_customer(values["customer_id"])
            return customer.get("email")
        return None

    def check(self, values: Dict[str, Any]) -> List[str]:
        if is_blank(values.get("email")) and is_blank(values.get("customer_id")):
            return ["Missing required field: email"]
        if not is_blank(values.get("email")) and not EMAIL_RE.match(str(values["email"]).strip()):
            return ["Invalid email address"]
        return []

    def perform(self, values: Dict[str, Any]) -> ServiceResult:
        email = self._recipient(values)
        if not email or not EMAIL_RE.match(email):
            raise ValidationError("Invalid email address", field="email")

        subject = str(values["subject"]).strip()
        html = render_email(subject, str(values["message"]))
        if not self.store.send_email(email, subject, html):
            raise TransportError("mail", "Failed to send email")

        return ServiceResult.ok({"email": email, "subject": subject}, message="Email sent successfully")


class SendSmsAction(BaseAction):
    action_type = "send_sms"
    name = "Send SMS"
    description = "Send an SMS to a customer"
    required_fields = ("message",)
    optional_fields = ("phone", "customer_id", "entity_id", "entity_type")
    aliases = {
        "message": ("text", "body", "content"),
        "phone": ("phone_number", "mobile"),
        "customer_id": (EntityRef("customer"), "user_id"),
    }

    def check(self, values: Dict[str, Any]) -> List[str]:
        if is_blank(values.get("phone")) and is_blank(values.get("customer_id")):
            return ["Phone number or customer ID is required"]
        return []

    def _phone(self, values: Dict[str, Any]) -> str:
        phone = values.get("phone")
        if is_blank(phone):
            customer = self._require_customer(values["customer_id"])
            phone = customer.get("phone") or customer.get("billing_phone")
        digits = re.sub(r"[^0-9]", "", str(phone or ""))
        if not digits:
            raise ValidationError("Phone number not found", field="phone")
        return digits

    def perform(self, values: Dict[str, Any]) -> ServiceResult:
        phone = self._phone(values)
        message = str(values["message"])

        if self.settings.get("sms_provider") and self.store.send_sms(phone, message):
            return ServiceResult.ok({"phone": phone, "message": message}, message="SMS sent successfully")

        # No provider (or the provider declined): keep it for manual sending
        manual_id = f"sms_{int(datetime.utcnow().timestamp())}_{secrets.token_hex(2)}"
        return ServiceResult.ok(
            {"id": manual_id, "phone": phone, "message": message, "status": "pending_manual", "manual": True},
            message="SMS stored for manual sending",
        )
