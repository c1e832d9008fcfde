import logging

from jinja2 import TemplateError

from models.delivery import Delivery
from models.order import Order
from services import email as email_service

logger = logging.getLogger(__name__)


def _label(status) -> str:
    return status.value.replace("_", " ").lower()


def notify_order_status(order: Order) -> None:
    """Tell the buyer their order moved to a new status."""
    buyer = order.buyer
    if buyer is None:
        return
    try:
        email_service.send_templated_email(
            buyer.email,
            f"Order #{order.id} {_label(order.status)}",
            "emails/order_status_changed.txt",
            {
                "first_name": buyer.first_name,
                "order_id": order.id,
                "status_label": _label(order.status),
                "notes": order.notes,
                "final_amount": f"{float(order.final_amount):.2f}",
            },
        )
    except TemplateError:
        logger.exception("Could not render status email for order %s", order.id)


def notify_delivery_assigned(delivery: Delivery) -> None:
    order = delivery.order
    if order is None or order.buyer is None:
        return
    driver = delivery.driver
    try:
        email_service.send_templated_email(
            order.buyer.email,
            f"Order #{order.id} has a driver",
            "emails/delivery_assigned.txt",
            {
                "first_name": order.buyer.first_name,
                "order_id": order.id,
                "driver_name": driver.full_name if driver else None,
            },
        )
    except TemplateError:
        logger.exception("Could not render assignment email for delivery %s", delivery.id)
