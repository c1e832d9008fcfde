import enum


class Role(str, enum.Enum):
    ADMIN = "ADMIN"
    SELLER = "SELLER"
    DRIVER = "DRIVER"
    BUYER = "BUYER"


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class DeliveryStatus(str, enum.Enum):
    PENDING = "PENDING"
    PENDING_PICKUP = "PENDING_PICKUP"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


# Older driver screens report these; both mean the parcel has left the pickup point
DELIVERY_STATUS_ALIASES = {
    "PICKED_UP": DeliveryStatus.OUT_FOR_DELIVERY,
    "EN_ROUTE": DeliveryStatus.OUT_FOR_DELIVERY,
}

TERMINAL_DELIVERY_STATUSES = frozenset(
    {DeliveryStatus.DELIVERED, DeliveryStatus.FAILED, DeliveryStatus.CANCELLED}
)
