"""
Order lifecycle: validates and applies order status changes.

Orders move forward one step at a time through
PENDING -> CONFIRMED -> PROCESSING -> SHIPPED -> DELIVERED. Admins may skip
ahead along that sequence but never move an order back. Any order that has
not been delivered can be cancelled, and delivered or cancelled orders can be
refunded. Nothing else is accepted, not even re-setting the current status.

Each change is written with a conditional UPDATE keyed on the status that was
validated, so two concurrent changes cannot both succeed from the same state.
Cancelling or delivering an order carries the linked delivery along in the
same transaction.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.errors import DomainError, Forbidden, InvalidAction, InvalidStatus, InvalidTransition, NotFound
from core.permissions import CallerContext, can_request_order_status
from models.delivery import Delivery
from models.enums import DeliveryStatus, OrderStatus, Role, TERMINAL_DELIVERY_STATUSES
from models.order import Order
from models.order_item import OrderItem
from services.notifications import notify_order_status

logger = logging.getLogger(__name__)

ORDER_SEQUENCE: Tuple[OrderStatus, ...] = (
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)
CANCELLABLE_STATUSES = frozenset(ORDER_SEQUENCE[:-1])
REFUNDABLE_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})


def _build_transitions() -> dict[OrderStatus, frozenset[OrderStatus]]:
    table: dict[OrderStatus, set[OrderStatus]] = {s: set() for s in OrderStatus}
    for current, nxt in zip(ORDER_SEQUENCE, ORDER_SEQUENCE[1:]):
        table[current].add(nxt)
    for current in CANCELLABLE_STATUSES:
        table[current].add(OrderStatus.CANCELLED)
    for current in REFUNDABLE_STATUSES:
        table[current].add(OrderStatus.REFUNDED)
    return {s: frozenset(targets) for s, targets in table.items()}


ORDER_TRANSITIONS = _build_transitions()

# Delivery status an order change drags along with it
_DELIVERY_CASCADE = {
    OrderStatus.CANCELLED: DeliveryStatus.CANCELLED,
    OrderStatus.DELIVERED: DeliveryStatus.DELIVERED,
}

BULK_ACTIONS = {
    "bulkConfirm": OrderStatus.CONFIRMED,
    "bulkShip": OrderStatus.SHIPPED,
    "bulkDeliver": OrderStatus.DELIVERED,
    "bulkCancel": OrderStatus.CANCELLED,
    "bulkRefund": OrderStatus.REFUNDED,
}
BULK_UPDATE_STATUS = "bulkUpdateStatus"


def can_transition_order(current: OrderStatus, target: OrderStatus, role: Optional[Role] = None) -> bool:
    if target in ORDER_TRANSITIONS.get(current, frozenset()):
        return True
    if role is Role.ADMIN and current in ORDER_SEQUENCE and target in ORDER_SEQUENCE:
        return ORDER_SEQUENCE.index(target) > ORDER_SEQUENCE.index(current)
    return False


def parse_order_status(value) -> OrderStatus:
    if isinstance(value, OrderStatus):
        return value
    if not isinstance(value, str) or not value.strip():
        raise InvalidStatus("Status is required")
    try:
        return OrderStatus(value.strip().upper())
    except ValueError:
        raise InvalidStatus(f"Invalid status value: {value}")


def _authorize_status_change(order: Order, target: OrderStatus, caller: CallerContext) -> None:
    if not can_request_order_status(caller.role, target):
        raise Forbidden(f"Role {caller.role.value} may not set orders to {target.value}")
    if caller.role is Role.SELLER and caller.user_id not in order.seller_ids():
        raise Forbidden("Order does not contain any of your items")


def _cascade_to_delivery(db: Session, order_id: int, target: OrderStatus, now: datetime) -> None:
    delivery_status = _DELIVERY_CASCADE.get(target)
    if delivery_status is None:
        return
    db.execute(
        update(Delivery)
        .where(Delivery.order_id == order_id, Delivery.status.not_in(TERMINAL_DELIVERY_STATUSES))
        .values(status=delivery_status, updated_at=now)
        .execution_options(synchronize_session=False)
    )


def _reload(db: Session, order: Order) -> Order:
    db.refresh(order)
    delivery = db.query(Delivery).filter(Delivery.order_id == order.id).one_or_none()
    if delivery is not None:
        db.refresh(delivery)
    return order


def update_order_status(
    db: Session,
    order_id: int,
    requested_status,
    caller: CallerContext,
    notes: Optional[str] = None,
) -> Order:
    target = parse_order_status(requested_status)
    order = db.get(Order, order_id, populate_existing=True)
    if order is None:
        raise NotFound(f"Order {order_id} not found")

    _authorize_status_change(order, target, caller)

    current = order.status
    if not can_transition_order(current, target, caller.role):
        logger.warning(
            "Rejected order %s transition %s -> %s by user %s", order.id, current.value, target.value, caller.user_id
        )
        raise InvalidTransition(f"Cannot change status from {current.value} to {target.value}")

    now = datetime.utcnow()
    values = {"status": target, "updated_at": now}
    if notes is not None:
        values["notes"] = notes

    try:
        result = db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == current)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            raise InvalidTransition(f"Order {order.id} is no longer {current.value}")
        _cascade_to_delivery(db, order.id, target, now)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info("Order %s %s -> %s by %s %s", order.id, current.value, target.value, caller.role.value, caller.user_id)
    _reload(db, order)
    notify_order_status(order)
    return order


def cancel_order(db: Session, order_id: int, caller: CallerContext) -> Order:
    """Orders are never deleted; removing one cancels it."""
    return update_order_status(db, order_id, OrderStatus.CANCELLED, caller)


@dataclass
class BulkFailure:
    order_id: int
    kind: str
    message: str


@dataclass
class BulkResult:
    updated_count: int = 0
    updated_ids: List[int] = field(default_factory=list)
    failures: List[BulkFailure] = field(default_factory=list)


def resolve_bulk_action(action: str, status=None) -> OrderStatus:
    if action == BULK_UPDATE_STATUS:
        return parse_order_status(status)
    try:
        return BULK_ACTIONS[action]
    except KeyError:
        raise InvalidAction(f"Unknown bulk action: {action}")


def bulk_update_order_status(
    db: Session,
    order_ids: Iterable[int],
    action: str,
    caller: CallerContext,
    status=None,
) -> BulkResult:
    """
    Apply one status change to many orders. Every order is validated and
    committed on its own; a failing order is reported and does not stop the rest.
    """
    target = resolve_bulk_action(action, status)
    result = BulkResult()
    for order_id in dict.fromkeys(order_ids):
        try:
            update_order_status(db, order_id, target, caller)
        except DomainError as exc:
            db.rollback()
            result.failures.append(BulkFailure(order_id=order_id, kind=exc.kind, message=exc.message))
        else:
            result.updated_count += 1
            result.updated_ids.append(order_id)
    logger.info(
        "Bulk %s -> %s: %d updated, %d failed", action, target.value, result.updated_count, len(result.failures)
    )
    return result


def get_order_for_caller(db: Session, order_id: int, caller: CallerContext) -> Order:
    order = db.get(Order, order_id)
    if order is None:
        raise NotFound(f"Order {order_id} not found")
    if caller.role is Role.ADMIN:
        return order
    if caller.role is Role.SELLER and caller.user_id in order.seller_ids():
        return order
    if caller.role is Role.BUYER and order.buyer_id == caller.user_id:
        return order
    raise Forbidden("You do not have access to this order")


def _scoped_query(db: Session, caller: CallerContext):
    query = db.query(Order)
    if caller.role is Role.SELLER:
        sold = select(OrderItem.order_id).where(OrderItem.seller_id == caller.user_id)
        query = query.filter(Order.id.in_(sold))
    elif caller.role is Role.BUYER:
        query = query.filter(Order.buyer_id == caller.user_id)
    elif caller.role is not Role.ADMIN:
        raise Forbidden("You do not have access to orders")
    return query


def list_orders_for_caller(
    db: Session,
    caller: CallerContext,
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
) -> Tuple[List[Order], int]:
    query = _scoped_query(db, caller)
    if status and status.upper() != "ALL":
        query = query.filter(Order.status == parse_order_status(status))
    total = query.count()
    orders = query.order_by(Order.created_at.desc(), Order.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return orders, total


def status_counts(db: Session, caller: CallerContext) -> dict[str, int]:
    scoped = _scoped_query(db, caller).with_entities(Order.status, func.count(Order.id)).group_by(Order.status)
    return {status.value: count for status, count in scoped.all()}
