"""Customer lifecycle analyzer."""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from shop_agent.models import AnalysisType
from .base import BaseAnalyzer, PRIORITY_GUIDELINES

CUSTOMER_ACTION_TYPES = ("send_email", "create_discount", "schedule_followup", "loyalty_reward", "create_campaign")

RECENT_WINDOW_DAYS = 90


def determine_segment(order_count: int, total_spent: float, days_since_last_order: Optional[int]) -> str:
    """Lifecycle segment from purchase history; first matching rule wins."""
    if order_count <= 1:
        return "new"
    if total_spent > 500 or order_count > 10:
        return "vip"
    if days_since_last_order is not None and days_since_last_order > 180:
        return "dormant"
    if days_since_last_order is not None and days_since_last_order > 60:
        return "at_risk"
    return "active"


def _order_date(order: Dict[str, Any]) -> Optional[date]:
    value = order.get("date")
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value[:19]).date()
        except ValueError:
            return None
    return None


class CustomerAnalyzer(BaseAnalyzer):
    analysis_type = AnalysisType.CUSTOMER.value
    entity_type = "customer"
    limit_setting = "analysis_customer_limit"

    def list_entity_ids(self, limit: int) -> List[int]:
        return self.store.list_customer_ids(limit)

    def order_stats(self, customer_id: int, today: Optional[date] = None) -> Dict[str, Any]:
        today = today or date.today()
        orders = self.store.get_customer_orders(customer_id)
        dates = [d for d in (_order_date(o) for o in orders) if d is not None]
        totals = [float(o.get("total", 0)) for o in orders]

        last_order = max(dates) if dates else None
        return {
            "last_order_date": last_order.isoformat() if last_order else None,
            "days_since_last_order": (today - last_order).days if last_order else None,
            "average_order_value": round(sum(totals) / len(totals), 2) if totals else 0,
            "orders_last_90_days": sum(1 for d in dates if (today - d).days <= RECENT_WINDOW_DAYS),
            "order_count": len(orders),
            "total_spent": round(sum(totals), 2),
        }

    def collect(self, entity_id: int) -> Optional[Dict[str, Any]]:
        customer = self.store.get_customer(entity_id)
        if customer is None:
            return None

        stats = self.order_stats(entity_id)
        history_count = stats.pop("order_count")
        history_spent = stats.pop("total_spent")
        order_count = int(customer.get("order_count", history_count))
        total_spent = float(customer.get("total_spent", history_spent))

        return {
            "id": customer["id"],
            "email": customer.get("email"),
            "first_name": customer.get("first_name", ""),
            "last_name": customer.get("last_name", ""),
            "date_created": customer.get("date_created"),
            "total_spent": total_spent,
            "order_count": order_count,
            "order_stats": stats,
            "segment": determine_segment(order_count, total_spent, stats["days_since_last_order"]),
        }

    def system_prompt(self) -> str:
        return (
            "You are an expert e-commerce customer lifecycle optimization agent. Analyze customer "
            "data and provide actionable suggestions to maximize customer lifetime value.\n\n"
            "Your response MUST be valid JSON with this structure:\n"
            "{\n"
            '    "analysis": "Brief analysis summary",\n'
            '    "priority_score": 1-100,\n'
            '    "suggestions": [\n'
            "        {\n"
            '            "type": "action_type",\n'
            '            "priority": 1-100,\n'
            '            "data": {"customer_id": ID, ...},\n'
            '            "reasoning": "Why this action is recommended"\n'
            "        }\n"
            "    ]\n"
            "}\n\n"
            f"Available action types: {', '.join(CUSTOMER_ACTION_TYPES)}\n\n"
            "Customer segments:\n"
            "- new: First-time buyers needing onboarding\n"
            "- active: Regular buyers for retention\n"
            "- vip: High-value customers for premium treatment\n"
            "- at_risk: Declining engagement, needs reactivation\n"
            "- dormant: Inactive, needs winback campaign\n\n"
            f"{PRIORITY_GUIDELINES}"
        )

    def user_prompt(self, data: Dict[str, Any]) -> str:
        stats = data["order_stats"]
        return (
            "Analyze this customer and suggest engagement actions:\n\n"
            f"Customer ID: {data['id']}\n"
            f"Name: {data['first_name']} {data['last_name']}\n"
            f"Registered: {data['date_created']}\n"
            f"Segment: {data['segment']}\n\n"
            "Purchase History:\n"
            f"- Total Orders: {data['order_count']}\n"
            f"- Total Spent: {data['total_spent']}\n"
            f"- Average Order Value: {stats['average_order_value']}\n"
            f"- Last Order: {stats['last_order_date']}\n"
            f"- Days Since Last Order: {stats['days_since_last_order']}\n"
            f"- Orders (Last {RECENT_WINDOW_DAYS} Days): {stats['orders_last_90_days']}\n\n"
            "Provide analysis and actionable suggestions in JSON format."
        )
