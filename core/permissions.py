"""
Role-gated access control.

The caller is resolved once per request into a ``CallerContext`` and handed to
the services explicitly. Which role may attempt which operation is decided here,
from one table, before any service code runs; services only add the ownership
checks that need the loaded order or delivery.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Optional

import jwt as pyjwt
from fastapi import Depends, Header
from sqlalchemy.orm import Session

from core.db import get_db
from core.errors import Forbidden, Unauthenticated
from models.enums import OrderStatus, Role
from models.user import User
from security import jwt as jwt_utils

logger = logging.getLogger(__name__)


class Operation(str, enum.Enum):
    MANAGE_ADDRESSES = "manage_addresses"
    MANAGE_PRODUCTS = "manage_products"
    PLACE_ORDER = "place_order"
    VIEW_ORDER = "view_order"
    UPDATE_ORDER_STATUS = "update_order_status"
    CANCEL_ORDER = "cancel_order"
    BULK_UPDATE_ORDERS = "bulk_update_orders"
    EXPORT_ORDERS = "export_orders"
    VIEW_DELIVERIES = "view_deliveries"
    ACCEPT_DELIVERY = "accept_delivery"
    UPDATE_DELIVERY_STATUS = "update_delivery_status"
    FORCE_DELIVERY_STATUS = "force_delivery_status"


PERMISSIONS: dict[Operation, frozenset[Role]] = {
    Operation.MANAGE_ADDRESSES: frozenset({Role.BUYER}),
    Operation.MANAGE_PRODUCTS: frozenset({Role.SELLER}),
    Operation.PLACE_ORDER: frozenset({Role.BUYER}),
    Operation.VIEW_ORDER: frozenset({Role.ADMIN, Role.SELLER, Role.BUYER}),
    Operation.UPDATE_ORDER_STATUS: frozenset({Role.ADMIN, Role.SELLER}),
    Operation.CANCEL_ORDER: frozenset({Role.ADMIN}),
    Operation.BULK_UPDATE_ORDERS: frozenset({Role.ADMIN}),
    Operation.EXPORT_ORDERS: frozenset({Role.ADMIN}),
    Operation.VIEW_DELIVERIES: frozenset({Role.DRIVER}),
    Operation.ACCEPT_DELIVERY: frozenset({Role.DRIVER}),
    Operation.UPDATE_DELIVERY_STATUS: frozenset({Role.DRIVER}),
    Operation.FORCE_DELIVERY_STATUS: frozenset({Role.ADMIN}),
}

# Order statuses each role may request. Sellers only move fulfilment forward;
# delivery is confirmed by drivers, cancellation and refunds belong to admins.
ORDER_STATUS_TARGETS: dict[Role, frozenset[OrderStatus]] = {
    Role.ADMIN: frozenset(OrderStatus),
    Role.SELLER: frozenset({OrderStatus.CONFIRMED, OrderStatus.PROCESSING, OrderStatus.SHIPPED}),
}


@dataclass(frozen=True)
class CallerContext:
    user_id: int
    role: Role
    user: Optional[User] = None

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


def is_allowed(role: Role, operation: Operation) -> bool:
    return role in PERMISSIONS.get(operation, frozenset())


def can_request_order_status(role: Role, target: OrderStatus) -> bool:
    return target in ORDER_STATUS_TARGETS.get(role, frozenset())


def get_current_user(
    db: Session = Depends(get_db), authorization: Optional[str] = Header(default=None, alias="Authorization")
) -> User:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise Unauthenticated()
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt_utils.decode_access(token)
    except pyjwt.PyJWTError:
        raise Unauthenticated("Invalid token")
    user_id = payload.get("sub")
    if user_id is None or not str(user_id).isdigit():
        raise Unauthenticated("Invalid token")
    user = db.query(User).filter(User.id == int(user_id)).one_or_none()
    if not user or not user.is_active:
        raise Unauthenticated("User not found")
    return user


def get_caller(user: User = Depends(get_current_user)) -> CallerContext:
    return CallerContext(user_id=user.id, role=user.role, user=user)


def require_permission(operation: Operation):
    """Dependency that only lets through callers whose role holds ``operation``."""
    def _check(caller: CallerContext = Depends(get_caller)) -> CallerContext:
        if not is_allowed(caller.role, operation):
            logger.warning("Denied %s to user %s with role %s", operation.value, caller.user_id, caller.role.value)
            raise Forbidden(f"Role {caller.role.value} may not {operation.value.replace('_', ' ')}")
        return caller
    return _check
