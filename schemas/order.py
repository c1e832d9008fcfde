from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from models.enums import DeliveryStatus, OrderStatus


class OrderItemIn(BaseModel):
    product_id: int
    quantity: int = Field(gt=0)


class OrderCreate(BaseModel):
    shipping_address_id: int
    items: List[OrderItemIn] = Field(min_length=1)
    notes: Optional[str] = None


class OrderStatusUpdate(BaseModel):
    # Kept as a plain string so unknown values surface as InvalidStatus (400)
    status: Optional[str] = None
    notes: Optional[str] = None


class BulkOrderUpdate(BaseModel):
    order_ids: List[int] = Field(alias="orderIds", min_length=1)
    action: str
    status: Optional[str] = None

    class Config:
        populate_by_name = True


class BulkFailureOut(BaseModel):
    order_id: int = Field(serialization_alias="orderId")
    kind: str
    message: str

    class Config:
        from_attributes = True


class BulkOrderResult(BaseModel):
    updated_count: int = Field(serialization_alias="updatedCount")
    updated_ids: List[int] = Field(serialization_alias="updatedIds")
    failures: List[BulkFailureOut]

    class Config:
        from_attributes = True


class OrderItemOut(BaseModel):
    id: int
    product_id: int
    seller_id: int
    quantity: int
    price: float

    class Config:
        from_attributes = True


class DeliverySummary(BaseModel):
    id: int
    driver_id: Optional[int] = None
    status: DeliveryStatus

    class Config:
        from_attributes = True


class OrderOut(BaseModel):
    id: int
    buyer_id: int
    shipping_address_id: int
    status: OrderStatus
    total_amount: float
    shipping_fee: float
    taxes: float
    final_amount: float
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    items: List[OrderItemOut]
    delivery: Optional[DeliverySummary] = None

    class Config:
        from_attributes = True


class OrderEnvelope(BaseModel):
    order: OrderOut


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class OrderList(BaseModel):
    orders: List[OrderOut]
    pagination: Pagination
    status_counts: dict[str, int] = Field(default_factory=dict, serialization_alias="statusCounts")


class MessageOut(BaseModel):
    message: str
