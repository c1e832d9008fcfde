import math
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from core.config import settings
from core.db import get_db
from core.permissions import CallerContext, Operation, require_permission
from schemas.delivery import AdminDeliveryList, DeliveryEnvelope, DeliveryStatusUpdate
from schemas.order import Pagination
from services import delivery as delivery_service

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/shipments", response_model=AdminDeliveryList)
def list_shipments(
    status: Optional[str] = None,
    driver_id: Optional[int] = None,
    page: int = Query(default=1, ge=1),
    limit: Optional[int] = Query(default=None, ge=1, le=200),
    caller: CallerContext = Depends(require_permission(Operation.FORCE_DELIVERY_STATUS)),
    db: Session = Depends(get_db),
):
    limit = limit or settings.DEFAULT_PAGE_SIZE
    deliveries, total = delivery_service.list_all_deliveries(
        db, status=status, driver_id=driver_id, page=page, limit=limit
    )
    return {
        "deliveries": deliveries,
        "pagination": Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
        "status_counts": delivery_service.delivery_status_counts(db),
    }


@router.get("/shipments/{delivery_id}", response_model=DeliveryEnvelope)
def get_shipment(
    delivery_id: int,
    caller: CallerContext = Depends(require_permission(Operation.FORCE_DELIVERY_STATUS)),
    db: Session = Depends(get_db),
):
    return {"delivery": delivery_service.get_delivery_for_caller(db, delivery_id, caller)}


@router.patch("/shipments/{delivery_id}", response_model=DeliveryEnvelope)
def force_shipment_status(
    delivery_id: int,
    data: DeliveryStatusUpdate,
    caller: CallerContext = Depends(require_permission(Operation.FORCE_DELIVERY_STATUS)),
    db: Session = Depends(get_db),
):
    """Admins skip the assignee check but follow the same transition table, plus cancellation."""
    delivery = delivery_service.update_delivery_status(db, delivery_id, data.status, caller)
    return {"delivery": delivery}
