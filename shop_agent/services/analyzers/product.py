"""Product sales analyzer."""

from typing import Any, Dict, List, Optional

from shop_agent.models import AnalysisType
from .base import BaseAnalyzer, PRIORITY_GUIDELINES

PRODUCT_ACTION_TYPES = (
    "send_email", "create_discount", "update_product", "create_campaign",
    "schedule_followup", "create_bundle", "inventory_alert", "schedule_price_change",
)

SALES_WINDOW_DAYS = 30


class ProductAnalyzer(BaseAnalyzer):
    analysis_type = AnalysisType.PRODUCT.value
    entity_type = "product"
    limit_setting = "analysis_product_limit"

    def list_entity_ids(self, limit: int) -> List[int]:
        return self.store.list_product_ids(limit)

    def collect(self, entity_id: int) -> Optional[Dict[str, Any]]:
        product = self.store.get_product(entity_id)
        if product is None:
            return None

        sales = self.store.get_product_sales(entity_id, SALES_WINDOW_DAYS)
        return {
            "id": product["id"],
            "name": product.get("name", ""),
            "type": product.get("type", "simple"),
            "status": product.get("status", "publish"),
            "price": product.get("price"),
            "regular_price": product.get("regular_price"),
            "sale_price": product.get("sale_price"),
            "stock_status": product.get("stock_status", "instock"),
            "stock_quantity": product.get("stock_quantity"),
            "total_sales": product.get("total_sales", 0),
            "average_rating": product.get("average_rating", 0),
            "review_count": product.get("review_count", 0),
            "categories": list(product.get("categories") or []),
            "date_created": product.get("date_created"),
            "recent_orders": {
                "orders_30d": int(sales.get("orders", 0)),
                "quantity_30d": int(sales.get("quantity", 0)),
                "revenue_30d": float(sales.get("revenue", 0)),
            },
        }

    def system_prompt(self) -> str:
        return (
            "You are an expert e-commerce sales optimization agent. Analyze product data and "
            "provide actionable suggestions to improve sales performance.\n\n"
            "Your response MUST be valid JSON with this structure:\n"
            "{\n"
            '    "analysis": "Brief analysis summary",\n'
            '    "priority_score": 1-100,\n'
            '    "suggestions": [\n'
            "        {\n"
            '            "type": "action_type",\n'
            '            "priority": 1-100,\n'
            '            "data": {},\n'
            '            "reasoning": "Why this action is recommended"\n'
            "        }\n"
            "    ]\n"
            "}\n\n"
            f"Available action types: {', '.join(PRODUCT_ACTION_TYPES)}\n\n"
            f"{PRIORITY_GUIDELINES}"
        )

    def user_prompt(self, data: Dict[str, Any]) -> str:
        recent = data["recent_orders"]
        return (
            "Analyze this product and suggest optimization actions:\n\n"
            f"Product: {data['name']} (ID: {data['id']})\n"
            f"Type: {data['type']}\n"
            f"Price: {data['price']} (Regular: {data['regular_price']}, Sale: {data['sale_price']})\n"
            f"Stock: {data['stock_status']} (Qty: {data['stock_quantity']})\n"
            f"Total Sales: {data['total_sales']}\n"
            f"Rating: {data['average_rating']} ({data['review_count']} reviews)\n"
            f"Categories: {', '.join(str(c) for c in data['categories'])}\n"
            f"Created: {data['date_created']}\n\n"
            f"Last {SALES_WINDOW_DAYS} Days Performance:\n"
            f"- Orders: {recent['orders_30d']}\n"
            f"- Quantity Sold: {recent['quantity_30d']}\n"
            f"- Revenue: {recent['revenue_30d']}\n\n"
            "Provide analysis and actionable suggestions in JSON format."
        )
