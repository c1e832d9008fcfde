import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.config import settings
from core.errors import InvalidStatus, NotFound, OutOfStock
from core.permissions import CallerContext
from models.address import Address
from models.delivery import Delivery
from models.enums import DeliveryStatus, OrderStatus
from models.order import Order
from models.order_item import OrderItem
from models.product import Product

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def _to_decimal(value: float | int | Decimal) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def compute_totals(subtotal: Decimal) -> dict[str, Decimal]:
    """Subtotal, shipping and tax for a basket; ``final_amount`` is always their sum."""
    subtotal = _money(subtotal)
    shipping_fee = Decimal("0.00") if subtotal > _to_decimal(settings.FREE_SHIPPING_THRESHOLD) else _money(
        _to_decimal(settings.SHIPPING_FEE)
    )
    taxes = _money(subtotal * _to_decimal(settings.TAX_RATE))
    return {
        "total_amount": subtotal,
        "shipping_fee": shipping_fee,
        "taxes": taxes,
        "final_amount": subtotal + shipping_fee + taxes,
    }


def place_order(
    db: Session,
    caller: CallerContext,
    items: Iterable,
    shipping_address_id: int,
    notes: Optional[str] = None,
) -> Order:
    """
    Turn a basket into a PENDING order with its items and an open delivery.
    Item prices are copied from the products at this moment.
    """
    items = list(items)
    if not items:
        raise InvalidStatus("Order must contain items")

    address = (
        db.query(Address).filter(Address.id == shipping_address_id, Address.user_id == caller.user_id).one_or_none()
    )
    if not address:
        raise NotFound("Shipping address not found")

    # Merge repeated lines for the same product
    quantities: dict[int, int] = {}
    for item in items:
        quantities[item.product_id] = quantities.get(item.product_id, 0) + item.quantity

    products_map = {
        p.id: p
        for p in db.query(Product).filter(Product.id.in_(quantities.keys()), Product.is_active.is_(True)).all()
    }
    missing = set(quantities) - set(products_map)
    if missing:
        raise NotFound(f"Products not found: {', '.join(str(pid) for pid in sorted(missing))}")

    for product_id, quantity in quantities.items():
        product = products_map[product_id]
        if product.stock < quantity:
            raise OutOfStock(f"Insufficient stock for {product.name}")

    try:
        subtotal = Decimal("0.00")
        order_items: list[OrderItem] = []
        for product_id, quantity in quantities.items():
            product = products_map[product_id]
            unit_price = _to_decimal(product.price)
            subtotal += unit_price * quantity
            product.stock -= quantity
            order_items.append(
                OrderItem(product_id=product.id, seller_id=product.seller_id, quantity=quantity, price=unit_price)
            )

        order = Order(
            buyer_id=caller.user_id,
            shipping_address_id=address.id,
            status=OrderStatus.PENDING,
            notes=notes,
            items=order_items,
            **compute_totals(subtotal),
        )
        db.add(order)
        db.flush()
        db.add(Delivery(order_id=order.id, status=DeliveryStatus.PENDING, driver_id=None))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    db.refresh(order)
    logger.info("Order %s placed by buyer %s for %s", order.id, caller.user_id, order.final_amount)
    return order
