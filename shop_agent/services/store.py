"""
Store gateway: the shop's domain data and mutators.

The analysis pipeline reads product and customer metrics through this
interface and the actions call its mutators (coupons, product updates,
messages). ``InMemoryStore`` is a complete implementation backed by plain
dictionaries; a real shop integration implements the same protocol.
"""

import itertools
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Protocol

from shop_agent.core.exceptions import NotFoundError, ValidationError
from shop_agent.core.logging_config import get_logger

logger = get_logger(__name__)


class StoreGateway(Protocol):
    def list_product_ids(self, limit: int) -> List[int]: ...

    def get_product(self, product_id: int) -> Optional[Dict[str, Any]]: ...

    def get_product_sales(self, product_id: int, days: int = 30) -> Dict[str, Any]: ...

    def list_customer_ids(self, limit: int) -> List[int]: ...

    def get_customer(self, customer_id: int) -> Optional[Dict[str, Any]]: ...

    def get_customer_orders(self, customer_id: int) -> List[Dict[str, Any]]: ...

    def coupon_exists(self, code: str) -> bool: ...

    def create_coupon(self, coupon: Dict[str, Any]) -> int: ...

    def update_product(self, product_id: int, changes: Dict[str, Any]) -> Dict[str, Any]: ...

    def create_campaign(self, campaign: Dict[str, Any]) -> int: ...

    def create_bundle(self, bundle: Dict[str, Any]) -> int: ...

    def set_stock_alert(self, product_id: int, threshold: int) -> Dict[str, Any]: ...

    def send_email(self, to: str, subject: str, html: str) -> bool: ...

    def send_sms(self, phone: str, message: str) -> bool: ...


class InMemoryStore:
    """Dictionary-backed shop used for local runs and tests."""

    def __init__(
        self,
        products: Optional[Dict[int, Dict[str, Any]]] = None,
        customers: Optional[Dict[int, Dict[str, Any]]] = None,
        orders: Optional[List[Dict[str, Any]]] = None,
    ):
        self.products: Dict[int, Dict[str, Any]] = {int(k): dict(v, id=int(k)) for k, v in (products or {}).items()}
        self.customers: Dict[int, Dict[str, Any]] = {int(k): dict(v, id=int(k)) for k, v in (customers or {}).items()}
        self.orders: List[Dict[str, Any]] = list(orders or [])
        self.coupons: Dict[str, Dict[str, Any]] = {}
        self.campaigns: Dict[int, Dict[str, Any]] = {}
        self.bundles: Dict[int, Dict[str, Any]] = {}
        self.stock_alerts: Dict[int, int] = {}
        self.sent_emails: List[Dict[str, str]] = []
        self.sent_sms: List[Dict[str, str]] = []
        self._ids = itertools.count(1000)

    # Reads

    def list_product_ids(self, limit: int) -> List[int]:
        published = [p for p in self.products.values() if p.get("status", "publish") == "publish"]
        published.sort(key=lambda p: (str(p.get("date_created") or ""), p["id"]), reverse=True)
        return [p["id"] for p in published[:limit]]

    def get_product(self, product_id: int) -> Optional[Dict[str, Any]]:
        product = self.products.get(int(product_id))
        return dict(product) if product else None

    def get_product_sales(self, product_id: int, days: int = 30) -> Dict[str, Any]:
        today = date.today()
        orders = quantity = 0
        revenue = 0.0
        for order in self.orders:
            if order.get("status", "completed") not in ("completed", "processing"):
                continue
            if (today - _as_date(order.get("date"), today)).days > days:
                continue
            lines = [line for line in order.get("items", []) if int(line.get("product_id", -1)) == int(product_id)]
            if lines:
                orders += 1
                quantity += sum(int(line.get("quantity", 1)) for line in lines)
                revenue += sum(float(line.get("total", 0)) for line in lines)
        return {"orders": orders, "quantity": quantity, "revenue": round(revenue, 2)}

    def list_customer_ids(self, limit: int) -> List[int]:
        ordered = sorted(self.customers.values(), key=lambda c: (str(c.get("date_created") or ""), c["id"]), reverse=True)
        return [c["id"] for c in ordered[:limit]]

    def get_customer(self, customer_id: int) -> Optional[Dict[str, Any]]:
        customer = self.customers.get(int(customer_id))
        return dict(customer) if customer else None

    def get_customer_orders(self, customer_id: int) -> List[Dict[str, Any]]:
        return [
            dict(o) for o in self.orders
            if int(o.get("customer_id", -1)) == int(customer_id)
            and o.get("status", "completed") in ("completed", "processing")
        ]

    # Mutators

    def coupon_exists(self, code: str) -> bool:
        return code.upper() in self.coupons

    def create_coupon(self, coupon: Dict[str, Any]) -> int:
        code = coupon["code"].upper()
        if code in self.coupons:
            raise ValidationError(f"Coupon code '{code}' already exists", field="code")
        coupon_id = next(self._ids)
        self.coupons[code] = dict(coupon, id=coupon_id, code=code)
        return coupon_id

    def update_product(self, product_id: int, changes: Dict[str, Any]) -> Dict[str, Any]:
        product = self.products.get(int(product_id))
        if product is None:
            raise NotFoundError("Product", product_id)
        product.update(changes)
        if "sale_price" in changes or "regular_price" in changes:
            product["price"] = product.get("sale_price") or product.get("regular_price")
        return dict(product)

    def create_campaign(self, campaign: Dict[str, Any]) -> int:
        campaign_id = next(self._ids)
        self.campaigns[campaign_id] = dict(campaign, id=campaign_id, created_at=datetime.utcnow().isoformat())
        return campaign_id

    def create_bundle(self, bundle: Dict[str, Any]) -> int:
        missing = [pid for pid in bundle.get("product_ids", []) if int(pid) not in self.products]
        if missing:
            raise NotFoundError("Product", missing[0])
        bundle_id = next(self._ids)
        self.bundles[bundle_id] = dict(bundle, id=bundle_id)
        return bundle_id

    def set_stock_alert(self, product_id: int, threshold: int) -> Dict[str, Any]:
        product = self.products.get(int(product_id))
        if product is None:
            raise NotFoundError("Product", product_id)
        self.stock_alerts[int(product_id)] = int(threshold)
        stock = product.get("stock_quantity")
        return {"product_id": int(product_id), "threshold": int(threshold), "stock_quantity": stock,
                "below_threshold": stock is not None and int(stock) <= int(threshold)}

    def send_email(self, to: str, subject: str, html: str) -> bool:
        self.sent_emails.append({"to": to, "subject": subject, "html": html})
        logger.info("Email queued", to=to, subject=subject)
        return True

    def send_sms(self, phone: str, message: str) -> bool:
        self.sent_sms.append({"phone": phone, "message": message})
        logger.info("SMS queued", phone=phone)
        return True


def _as_date(value: Any, fallback: date) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value[:19]).date()
        except ValueError:
            return fallback
    return fallback
