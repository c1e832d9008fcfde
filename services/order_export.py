import csv
import io
import json
from typing import List, Optional

from sqlalchemy.orm import Session

from core.errors import InvalidAction
from models.order import Order
from services.order_lifecycle import parse_order_status

EXPORT_COLUMNS = [
    "id",
    "status",
    "buyer_email",
    "item_count",
    "total_amount",
    "shipping_fee",
    "taxes",
    "final_amount",
    "delivery_status",
    "created_at",
    "updated_at",
]


def _row(order: Order) -> dict:
    return {
        "id": order.id,
        "status": order.status.value,
        "buyer_email": order.buyer.email if order.buyer else "",
        "item_count": sum(item.quantity for item in order.items),
        "total_amount": f"{float(order.total_amount):.2f}",
        "shipping_fee": f"{float(order.shipping_fee):.2f}",
        "taxes": f"{float(order.taxes):.2f}",
        "final_amount": f"{float(order.final_amount):.2f}",
        "delivery_status": order.delivery.status.value if order.delivery else "",
        "created_at": order.created_at.isoformat(),
        "updated_at": order.updated_at.isoformat(),
    }


def export_rows(db: Session, status: Optional[str] = None) -> List[dict]:
    query = db.query(Order)
    if status and status.upper() != "ALL":
        query = query.filter(Order.status == parse_order_status(status))
    return [_row(order) for order in query.order_by(Order.id).all()]


def export_orders(db: Session, fmt: str = "csv", status: Optional[str] = None) -> tuple[str, str]:
    """Return ``(body, media_type)`` for a CSV or JSON dump of the orders."""
    fmt = (fmt or "csv").lower()
    if fmt not in ("csv", "json"):
        raise InvalidAction(f"Unsupported export format: {fmt}")

    rows = export_rows(db, status)
    if fmt == "json":
        return json.dumps({"orders": rows, "count": len(rows)}), "application/json"

    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=EXPORT_COLUMNS)
    writer.writeheader()
    writer.writerows(rows)
    return buffer.getvalue(), "text/csv"
