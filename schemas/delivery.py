from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from models.enums import DeliveryStatus
from schemas.order import OrderOut, Pagination


class DeliveryStatusUpdate(BaseModel):
    status: Optional[str] = None


class DeliveryOut(BaseModel):
    id: int
    order_id: int
    driver_id: Optional[int] = None
    status: DeliveryStatus
    created_at: datetime
    updated_at: datetime
    order: Optional[OrderOut] = None

    class Config:
        from_attributes = True


class DeliveryEnvelope(BaseModel):
    delivery: DeliveryOut
    message: Optional[str] = None


class DeliveryList(BaseModel):
    deliveries: List[DeliveryOut]
    pagination: Pagination


class AdminDeliveryList(DeliveryList):
    status_counts: dict[str, int] = Field(default_factory=dict, serialization_alias="statusCounts")
