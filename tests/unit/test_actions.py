"""
Tests for the individual action types: alias resolution, validation and the
store mutations they perform.
"""

from datetime import datetime, timedelta

import pytest

from shop_agent.services.actions.base import parse_schedule_time, render_email
from shop_agent.services.actions.registry import ACTION_CLASSES, ActionType


def run(registry, action_type, data):
    return registry.get(action_type).execute(data)


class TestRegistry:

    def test_every_type_has_an_implementation(self):
        assert set(ACTION_CLASSES) == set(ActionType)

    def test_parse_is_case_insensitive(self):
        assert ActionType.parse(" Send_Email ") is ActionType.SEND_EMAIL
        assert ActionType.parse("teleport") is None

    def test_meta_reflects_settings(self, registry, settings_store):
        settings_store.set("actions_enabled_types", ["send_sms"])
        available = registry.available()

        assert available["send_sms"]["enabled"]
        assert not available["send_email"]["enabled"]
        assert available["create_discount"]["requires_approval"]
        assert not available["send_sms"]["requires_approval"]
        assert set(registry.enabled()) == {"send_sms"}

    def test_approval_list_adds_to_type_defaults(self, registry, settings_store):
        settings_store.set("actions_require_approval", ["send_email"])

        assert registry.get("send_email").requires_approval()
        # Type defaults still apply even when not listed
        assert registry.get("loyalty_reward").requires_approval()

    def test_validate_unknown_type(self, registry):
        assert registry.validate("teleport", {}) == {"valid": False, "errors": ["Unknown action type: teleport"]}


class TestCreateDiscount:

    def test_percent_from_alias_with_generated_code(self, registry, store):
        result = run(registry, "create_discount", {"discount_percent": 15, "entity_type": "product", "entity_id": 3})

        assert result.success
        code = result.data["code"]
        assert code.startswith("AI-")
        coupon = store.coupons[code]
        assert coupon["amount"] == 15
        assert coupon["discount_type"] == "percent"
        assert coupon["product_ids"] == [3]
        assert coupon["usage_limit"] == 1

    def test_amount_alone_means_fixed_cart(self, registry, store):
        result = run(registry, "create_discount", {"discount_amount": 5, "code": "save5"})

        assert result.data["type"] == "fixed_cart"
        assert store.coupons["SAVE5"]["amount"] == 5

    def test_customer_restriction(self, registry, store):
        result = run(registry, "create_discount", {"amount": 10, "entity_type": "customer", "entity_id": 101,
                                                   "expiry_date": 7})

        coupon = store.coupons[result.data["code"]]
        assert coupon["email_restrictions"] == ["anna@example.com"]
        assert "expires_at" in coupon

    @pytest.mark.parametrize("data,error", [
        ({}, "Missing required field: amount"),
        ({"amount": 0}, "amount must be greater than 0"),
        ({"amount": 150}, "Percent discount cannot exceed 100%"),
        ({"amount": 10, "type": "bogus"}, "Invalid discount type"),
        ({"amount": 10, "expiry_date": "someday"}, "Invalid expiry_date"),
    ])
    def test_validation(self, registry, data, error):
        result = run(registry, "create_discount", data)

        assert not result.success
        assert result.error_code == "VALIDATION_ERROR"
        assert error in result.errors

    def test_duplicate_code_rejected(self, registry):
        run(registry, "create_discount", {"amount": 10, "code": "ONCE"})
        result = run(registry, "create_discount", {"amount": 10, "code": "once"})
        assert "Coupon code already exists" in result.errors

    def test_unknown_customer_is_not_found(self, registry):
        result = run(registry, "create_discount", {"amount": 10, "customer_id": 999})
        assert result.error_code == "NOT_FOUND"


class TestUpdateProduct:

    def test_updates_price_and_stock(self, registry, store):
        result = run(registry, "update_product", {"entity_type": "product", "entity_id": 2,
                                                  "new_price": "25.50", "stock_quantity": 40})

        assert result.success
        product = store.products[2]
        assert product["regular_price"] == 25.5
        assert product["stock_quantity"] == 40
        assert product["manage_stock"] is True

    @pytest.mark.parametrize("data,error", [
        ({"product_id": 999, "price": 10}, "Product not found"),
        ({"product_id": 1, "price": 10, "sale_price": 12}, "Sale price must be less than regular price"),
        ({"product_id": 1, "status": "archived"}, "Invalid status; expected one of publish, draft, pending, private"),
        ({"product_id": 1}, "Nothing to update"),
    ])
    def test_validation(self, registry, data, error):
        assert error in run(registry, "update_product", data).errors


class TestMessaging:

    def test_email_to_customer_by_id(self, registry, store):
        result = run(registry, "send_email", {"entity_type": "customer", "entity_id": 101,
                                              "subject": "We miss you", "body": "Come back.\n\nHere is 10% off."})

        assert result.success
        sent = store.sent_emails[-1]
        assert sent["to"] == "anna@example.com"
        assert "<p>Come back.</p>" in sent["html"]

    def test_email_content_is_escaped(self):
        html = render_email("Hi", "<script>alert(1)</script>")
        assert "<script>" not in html
        assert "&lt;script&gt;" in html

    def test_email_requires_recipient(self, registry):
        result = run(registry, "send_email", {"subject": "s", "message": "m"})
        assert "Missing required field: email" in result.errors

    def test_sms_without_provider_is_kept_for_manual_sending(self, registry, store):
        result = run(registry, "send_sms", {"customer_id": 101, "text": "Your order shipped"})

        assert result.success
        assert result.data["manual"] is True
        assert result.data["phone"] == "15550102030"
        assert store.sent_sms == []

    def test_sms_with_provider(self, registry, store, settings_store):
        settings_store.set("sms_provider", "twilio")
        result = run(registry, "send_sms", {"phone": "+1 555 000", "message": "hi"})

        assert result.success
        assert store.sent_sms == [{"phone": "1555000", "message": "hi"}]

    def test_sms_customer_without_phone(self, registry):
        result = run(registry, "send_sms", {"customer_id": 102, "message": "hi"})
        assert result.error_code == "VALIDATION_ERROR"


class TestCatalogAndScheduling:

    def test_bundle(self, registry, store):
        result = run(registry, "create_bundle", {"products": "1, 2, 2", "name": "Duo", "discount": 10})

        assert result.success
        assert store.bundles[result.data["bundle_id"]]["product_ids"] == [1, 2]

    def test_bundle_needs_two_products(self, registry):
        assert "A bundle needs at least two products" in run(
            registry, "create_bundle", {"product_ids": [1, 1], "bundle_name": "Solo", "discount_amount": 5}
        ).errors

    def test_inventory_alert(self, registry, store):
        result = run(registry, "inventory_alert", {"entity_type": "product", "entity_id": 1, "min_stock": 20})

        assert result.data["below_threshold"]
        assert store.stock_alerts == {1: 20}

    def test_loyalty_reward(self, registry, store):
        result = run(registry, "loyalty_reward", {"entity_type": "customer", "entity_id": 101,
                                                  "type": "percent", "value": 20})

        coupon = store.coupons[result.data["code"]]
        assert coupon["discount_type"] == "percent"
        assert coupon["email_restrictions"] == ["anna@example.com"]

    def test_campaign(self, registry, store):
        result = run(registry, "create_campaign", {"title": "Winback", "segment": "dormant", "channels": "email,sms"})

        assert result.success
        assert store.campaigns[result.data["campaign_id"]]["channels"] == ["email", "sms"]

    def test_followup_creates_task(self, registry, task_repo):
        result = run(registry, "schedule_followup", {"delay_days": 3, "followup_action": "send_email",
                                                     "entity_type": "customer", "entity_id": 101,
                                                     "message": "How was your order?"})

        task = task_repo.get(result.data["id"])
        assert task.task_type == "followup"
        assert task.task_data["customer_id"] == 101
        assert task.scheduled_at > datetime.utcnow() + timedelta(days=2)

    def test_price_change_records_current_price(self, registry, task_repo):
        result = run(registry, "schedule_price_change", {"entity_type": "product", "entity_id": 4,
                                                         "price": 18, "effective_date": "2030-01-01"})

        task = task_repo.get(result.data["id"])
        assert task.task_data["current_price"] == "20.00"
        assert task.task_data["new_price"] == 18
        assert task.scheduled_at == datetime(2030, 1, 1)

    def test_price_change_unknown_product(self, registry):
        result = run(registry, "schedule_price_change", {"product_id": 999, "new_price": 5, "schedule_time": 1})
        assert result.error_code == "NOT_FOUND"


class TestParseScheduleTime:

    def test_days_from_now(self):
        now = datetime(2024, 1, 1)
        assert parse_schedule_time(2, now) == datetime(2024, 1, 3)
        assert parse_schedule_time("0.5", now) == datetime(2024, 1, 1, 12)

    def test_iso_strings(self):
        assert parse_schedule_time("2024-05-01T10:00:00Z") == datetime(2024, 5, 1, 10)
        assert parse_schedule_time("2024-05-01") == datetime(2024, 5, 1)

    def test_garbage(self):
        assert parse_schedule_time("next tuesday") is None
