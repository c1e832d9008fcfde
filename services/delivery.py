"""
Delivery assignment: drivers claim open deliveries and move them to completion.

A delivery starts PENDING with no driver. Accepting it sets the driver and
moves it to PENDING_PICKUP in one conditional UPDATE, so when several drivers
race for the same delivery exactly one of them wins. From there the assignee
(or an admin) advances it PENDING_PICKUP -> OUT_FOR_DELIVERY -> DELIVERED, or
marks it FAILED. DELIVERED, FAILED and CANCELLED are final.
"""
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import and_, func, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.errors import (
    AlreadyAssigned,
    AlreadyTerminal,
    DriverUnavailable,
    Forbidden,
    InvalidStatus,
    InvalidTransition,
    NotFound,
)
from core.permissions import CallerContext
from models.delivery import Delivery
from models.enums import (
    DELIVERY_STATUS_ALIASES,
    DeliveryStatus,
    OrderStatus,
    Role,
    TERMINAL_DELIVERY_STATUSES,
)
from models.order import Order
from models.profile import DriverProfile
from services.notifications import notify_delivery_assigned, notify_order_status

logger = logging.getLogger(__name__)

DELIVERY_TRANSITIONS: dict[DeliveryStatus, frozenset[DeliveryStatus]] = {
    DeliveryStatus.PENDING_PICKUP: frozenset({DeliveryStatus.OUT_FOR_DELIVERY, DeliveryStatus.FAILED}),
    DeliveryStatus.OUT_FOR_DELIVERY: frozenset({DeliveryStatus.DELIVERED, DeliveryStatus.FAILED}),
}

# Orders in these states are left alone when their delivery completes
_ORDER_FINAL_STATUSES = (OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.REFUNDED)


def parse_delivery_status(value) -> DeliveryStatus:
    if isinstance(value, DeliveryStatus):
        return value
    if not isinstance(value, str) or not value.strip():
        raise InvalidStatus("Status is required")
    key = value.strip().upper()
    if key in DELIVERY_STATUS_ALIASES:
        return DELIVERY_STATUS_ALIASES[key]
    try:
        return DeliveryStatus(key)
    except ValueError:
        raise InvalidStatus(f"Invalid delivery status: {value}")


def can_transition_delivery(current: DeliveryStatus, target: DeliveryStatus, role: Role) -> bool:
    if current in TERMINAL_DELIVERY_STATUSES:
        return False
    if role is Role.ADMIN and target is DeliveryStatus.CANCELLED:
        return True
    return target in DELIVERY_TRANSITIONS.get(current, frozenset())


def _reload(db: Session, delivery: Delivery) -> Delivery:
    db.refresh(delivery)
    order = db.get(Order, delivery.order_id)
    if order is not None:
        db.refresh(order)
    return delivery


def accept_delivery(db: Session, delivery_id: int, caller: CallerContext) -> Delivery:
    profile = db.query(DriverProfile).filter(DriverProfile.user_id == caller.user_id).one_or_none()
    if profile is None:
        raise NotFound("Driver profile not found")
    if not profile.is_available:
        raise DriverUnavailable()

    try:
        result = db.execute(
            update(Delivery)
            .where(
                Delivery.id == delivery_id,
                Delivery.driver_id.is_(None),
                Delivery.status == DeliveryStatus.PENDING,
            )
            .values(driver_id=caller.user_id, status=DeliveryStatus.PENDING_PICKUP, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            if db.get(Delivery, delivery_id) is None:
                raise NotFound(f"Shipment {delivery_id} not found")
            logger.info("Driver %s lost shipment %s, already assigned", caller.user_id, delivery_id)
            raise AlreadyAssigned()
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    delivery = db.get(Delivery, delivery_id)
    _reload(db, delivery)
    logger.info("Driver %s accepted shipment %s for order %s", caller.user_id, delivery.id, delivery.order_id)
    notify_delivery_assigned(delivery)
    return delivery


def update_delivery_status(db: Session, delivery_id: int, new_status, caller: CallerContext) -> Delivery:
    target = parse_delivery_status(new_status)
    delivery = db.get(Delivery, delivery_id, populate_existing=True)
    if delivery is None:
        raise NotFound(f"Shipment {delivery_id} not found")
    if delivery.is_terminal:
        raise AlreadyTerminal(f"Shipment {delivery.id} is already {delivery.status.value}")
    if not caller.is_admin and (caller.role is not Role.DRIVER or delivery.driver_id != caller.user_id):
        raise Forbidden("Only the assigned driver can update this shipment")

    current = delivery.status
    if not can_transition_delivery(current, target, caller.role):
        logger.warning(
            "Rejected shipment %s transition %s -> %s by user %s", delivery.id, current.value, target.value, caller.user_id
        )
        raise InvalidTransition(f"Cannot change shipment from {current.value} to {target.value}")

    now = datetime.utcnow()
    conditions = [Delivery.id == delivery.id, Delivery.status == current]
    if not caller.is_admin:
        conditions.append(Delivery.driver_id == caller.user_id)

    order_delivered = False
    try:
        result = db.execute(
            update(Delivery)
            .where(and_(*conditions))
            .values(status=target, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            raise InvalidTransition(f"Shipment {delivery.id} is no longer {current.value}")
        if target is DeliveryStatus.DELIVERED:
            order_result = db.execute(
                update(Order)
                .where(Order.id == delivery.order_id, Order.status.not_in(_ORDER_FINAL_STATUSES))
                .values(status=OrderStatus.DELIVERED, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            order_delivered = order_result.rowcount == 1
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info(
        "Shipment %s %s -> %s by %s %s", delivery.id, current.value, target.value, caller.role.value, caller.user_id
    )
    _reload(db, delivery)
    if order_delivered:
        notify_order_status(delivery.order)
    return delivery


def get_delivery_for_caller(db: Session, delivery_id: int, caller: CallerContext) -> Delivery:
    delivery = db.get(Delivery, delivery_id)
    if delivery is None:
        raise NotFound(f"Shipment {delivery_id} not found")
    if caller.is_admin:
        return delivery
    open_for_pickup = delivery.driver_id is None and delivery.status is DeliveryStatus.PENDING
    if caller.role is Role.DRIVER and (delivery.driver_id == caller.user_id or open_for_pickup):
        return delivery
    raise Forbidden("You do not have access to this shipment")


def list_driver_deliveries(
    db: Session,
    caller: CallerContext,
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> Tuple[List[Delivery], int]:
    """Deliveries assigned to the driver plus the ones still open for anyone to accept."""
    query = db.query(Delivery).filter(
        or_(
            Delivery.driver_id == caller.user_id,
            and_(Delivery.driver_id.is_(None), Delivery.status == DeliveryStatus.PENDING),
        )
    )
    if status:
        query = query.filter(Delivery.status == parse_delivery_status(status))
    total = query.count()
    deliveries = (
        query.order_by(Delivery.created_at.desc(), Delivery.id.desc()).offset((page - 1) * limit).limit(limit).all()
    )
    return deliveries, total


def list_all_deliveries(
    db: Session,
    status: Optional[str] = None,
    driver_id: Optional[int] = None,
    page: int = 1,
    limit: int = 50,
) -> Tuple[List[Delivery], int]:
    query = db.query(Delivery)
    if status and status.strip().upper() != "ALL":
        query = query.filter(Delivery.status == parse_delivery_status(status))
    if driver_id is not None:
        query = query.filter(Delivery.driver_id == driver_id)
    total = query.count()
    deliveries = (
        query.order_by(Delivery.updated_at.desc(), Delivery.id.desc()).offset((page - 1) * limit).limit(limit).all()
    )
    return deliveries, total


def delivery_status_counts(db: Session) -> dict[str, int]:
    rows = db.query(Delivery.status, func.count(Delivery.id)).group_by(Delivery.status).all()
    return {status.value: count for status, count in rows}
