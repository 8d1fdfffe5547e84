"""Actions that change the shop catalogue: coupons, products, bundles, stock alerts."""

import secrets
import time
from typing import Any, Dict, List

from shop_agent.core.exceptions import ValidationError
from shop_agent.domain.results import ServiceResult
from .base import BaseAction, EntityRef, is_blank, parse_schedule_time, to_float, to_int

DISCOUNT_TYPES = ("percent", "fixed_cart", "fixed_product")
PRODUCT_STATUSES = ("publish", "draft", "pending", "private")
PRODUCT_ID_ALIASES = (EntityRef("product"), "id")


def _discount_type(values: Dict[str, Any]) -> str:
    kind = values.get("type")
    if is_blank(kind):
        if not is_blank(values.get("discount_amount")) and is_blank(values.get("discount_percent")):
            return "fixed_cart"
        return "percent"
    kind = str(kind).strip().lower()
    return "fixed_cart" if kind == "fixed" else kind


class CreateDiscountAction(BaseAction):
    action_type = "create_discount"
    name = "Create Discount"
    description = "Create a single-use discount coupon"
    required_fields = ("amount",)
    optional_fields = ("code", "type", "expiry_date", "customer_id", "product_ids", "usage_limit")
    aliases = {
        "amount": ("discount_percent", "discount_amount", "discount", "value"),
        "type": ("discount_type",),
        "code": ("coupon_code",),
        "customer_id": (EntityRef("customer"),),
        "product_ids": ("products",),
    }
    default_requires_approval = True

    def normalize(self, data: Dict[str, Any]) -> Dict[str, Any]:
        values = super().normalize(data)
        values["type"] = _discount_type(values)
        if is_blank(values.get("product_ids")) and str(values.get("entity_type") or "").lower() == "product":
            if not is_blank(values.get("entity_id")):
                values["product_ids"] = [values["entity_id"]]
        return values

    def check(self, values: Dict[str, Any]) -> List[str]:
        errors: List[str] = []
        amount = self._check_positive(values, "amount", errors)
        if values["type"] not in DISCOUNT_TYPES:
            errors.append("Invalid discount type")
        elif values["type"] == "percent" and amount is not None and amount > 100:
            errors.append("Percent discount cannot exceed 100%")
        if not is_blank(values.get("expiry_date")) and parse_schedule_time(values["expiry_date"]) is None:
            errors.append("Invalid expiry_date")
        if not is_blank(values.get("code")) and self.store.coupon_exists(str(values["code"]).strip()):
            errors.append("Coupon code already exists")
        return errors

    def _generate_code(self) -> str:
        while True:
            code = f"AI-{secrets.token_hex(4).upper()}"
            if not self.store.coupon_exists(code):
                return code

    def perform(self, values: Dict[str, Any]) -> ServiceResult:
        code = str(values.get("code") or "").strip().upper() or self._generate_code()
        if self.store.coupon_exists(code):
            raise ValidationError("Coupon code already exists", field="code")

        amount = to_float(values["amount"])
        coupon: Dict[str, Any] = {
            "code": code,
            "amount": amount,
            "discount_type": values["type"],
            "usage_limit": to_int(values.get("usage_limit")) or 1,
            "individual_use": True,
        }
        expires = parse_schedule_time(values.get("expiry_date")) if not is_blank(values.get("expiry_date")) else None
        if expires is not None:
            coupon["expires_at"] = expires.isoformat()
        if not is_blank(values.get("customer_id")):
            email = self._require_customer(values["customer_id"]).get("email")
            if email:
                coupon["email_restrictions"] = [email]
        if not is_blank(values.get("product_ids")):
            coupon["product_ids"] = [int(p) for p in self._id_list(values["product_ids"])]

        coupon_id = self.store.create_coupon(coupon)
        return ServiceResult.ok(
            {"coupon_id": coupon_id, "code": code, "amount": amount, "type": values["type"]},
            message="Coupon created successfully",
        )


class UpdateProductAction(BaseAction):
    action_type = "update_product"
    name = "Update Product"
    description = "Update product price, stock, visibility or status"
    required_fields = ("product_id",)
    optional_fields = ("price", "sale_price", "stock_quantity", "featured", "status")
    aliases = {
        "product_id": PRODUCT_ID_ALIASES,
        "price": ("regular_price", "new_price"),
        "status": ("product_status",),
    }
    default_requires_approval = True

    def check(self, values: Dict[str, Any]) -> List[str]:
        errors: List[str] = []
        product_id = self._check_id(values, "product_id", errors)
        if product_id is not None and self.store.get_product(product_id) is None:
            errors.append("Product not found")

        price = to_float(values.get("price"))
        sale_price = to_float(values.get("sale_price"))
        if not is_blank(values.get("price")) and (price is None or price < 0):
            errors.append("Price cannot be negative")
        if not is_blank(values.get("sale_price")) and (sale_price is None or sale_price < 0):
            errors.append("Sale price cannot be negative")
        if price is not None and sale_price is not None and sale_price >= price:
            errors.append("Sale price must be less than regular price")
        if not is_blank(values.get("stock_quantity")) and to_int(values["stock_quantity"]) is None:
            errors.append("stock_quantity must be an integer")
        if not is_blank(values.get("status")) and values["status"] not in PRODUCT_STATUSES:
            errors.append(f"Invalid status; expected one of {', '.join(PRODUCT_STATUSES)}")
        if not any(not is_blank(values.get(f)) for f in self.optional_fields):
            errors.append("Nothing to update")
        return errors

    def perform(self, values: Dict[str, Any]) -> ServiceResult:
        product_id = int(values["product_id"])
        changes: Dict[str, Any] = {}
        if not is_blank(values.get("price")):
            changes["regular_price"] = to_float(values["price"])
        if "sale_price" in values and values["sale_price"] is not None:
            changes["sale_price"] = None if values["sale_price"] == "" else to_float(values["sale_price"])
        if not is_blank(values.get("stock_quantity")):
            changes["stock_quantity"] = to_int(values["stock_quantity"])
            changes["manage_stock"] = True
        if values.get("featured") is not None:
            changes["featured"] = bool(values["featured"])
        if not is_blank(values.get("status")):
            changes["status"] = values["status"]

        self.store.update_product(product_id, changes)
        return ServiceResult.ok(
            {"product_id": product_id, "updated_fields": changes},
            message="Product updated successfully",
        )


class CreateBundleAction(BaseAction):
    action_type = "create_bundle"
    name = "Create Bundle"
    description = "Create a discounted product bundle"
    required_fields = ("product_ids", "bundle_name", "discount_amount")
    optional_fields = ("description", "expiry_date")
    aliases = {
        "product_ids": ("products",),
        "bundle_name": ("name",),
        "discount_amount": ("discount", "discount_percent"),
    }

    def check(self, values: Dict[str, Any]) -> List[str]:
        errors: List[str] = []
        ids = [to_int(p) for p in self._id_list(values["product_ids"])]
        if any(i is None or i <= 0 for i in ids):
            errors.append("product_ids must be positive integers")
        elif len(set(ids)) < 2:
            errors.append("A bundle needs at least two products")
        self._check_positive(values, "discount_amount", errors)
        return errors

    def perform(self, values: Dict[str, Any]) -> ServiceResult:
        bundle = {
            "name": str(values["bundle_name"]).strip(),
            "product_ids": list(dict.fromkeys(int(p) for p in self._id_list(values["product_ids"]))),
            "discount": to_float(values["discount_amount"]),
            "description": str(values.get("description") or ""),
        }
        bundle_id = self.store.create_bundle(bundle)
        return ServiceResult.ok(dict(bundle, bundle_id=bundle_id), message="Bundle created")


class InventoryAlertAction(BaseAction):
    action_type = "inventory_alert"
    name = "Inventory Alert"
    description = "Set a low stock alert for a product"
    required_fields = ("product_id", "threshold")
    optional_fields = ("alert_email",)
    aliases = {
        "product_id": PRODUCT_ID_ALIASES,
        "threshold": ("min_stock", "low_stock_amount"),
    }

    def check(self, values: Dict[str, Any]) -> List[str]:
        errors: List[str] = []
        self._check_id(values, "product_id", errors)
        threshold = to_int(values.get("threshold"))
        if threshold is None or threshold < 0:
            errors.append("threshold must be a non-negative integer")
        return errors

    def perform(self, values: Dict[str, Any]) -> ServiceResult:
        product_id = int(values["product_id"])
        self._require_product(product_id)
        alert = self.store.set_stock_alert(product_id, to_int(values["threshold"]))
        return ServiceResult.ok(alert, message="Inventory alert set")


class LoyaltyRewardAction(BaseAction):
    action_type = "loyalty_reward"
    name = "Loyalty Reward"
    description = "Issue a loyalty reward coupon to a customer"
    required_fields = ("customer_id", "reward_type", "amount")
    optional_fields = ("reason", "expiry_date")
    aliases = {
        "customer_id": (EntityRef("customer"), "user_id"),
        "reward_type": ("type",),
        "amount": ("points", "value"),
    }
    default_requires_approval = True

    def check(self, values: Dict[str, Any]) -> List[str]:
        errors: List[str] = []
        self._check_id(values, "customer_id", errors)
        amount = self._check_positive(values, "amount", errors)
        if str(values["reward_type"]).lower() == "percent" and amount is not None and amount > 100:
            errors.append("Percent reward cannot exceed 100%")
        return errors

    def perform(self, values: Dict[str, Any]) -> ServiceResult:
        customer_id = int(values["customer_id"])
        customer = self._require_customer(customer_id)

        code = f"LOYALTY-{customer_id}-{int(time.time())}"
        coupon: Dict[str, Any] = {
            "code": code,
            "amount": to_float(values["amount"]),
            "discount_type": "percent" if str(values["reward_type"]).lower() == "percent" else "fixed_cart",
            "usage_limit": 1,
            "individual_use": True,
        }
        if customer.get("email"):
            coupon["email_restrictions"] = [customer["email"]]
        expires = parse_schedule_time(values.get("expiry_date")) if not is_blank(values.get("expiry_date")) else None
        if expires is not None:
            coupon["expires_at"] = expires.isoformat()

        coupon_id = self.store.create_coupon(coupon)
        return ServiceResult.ok(
            {"coupon_id": coupon_id, "code": code, "customer_id": customer_id},
            message="Loyalty reward issued",
        )
