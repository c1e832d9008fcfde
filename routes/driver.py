import math
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from core.db import get_db
from core.permissions import CallerContext, Operation, require_permission
from schemas.delivery import DeliveryEnvelope, DeliveryList, DeliveryStatusUpdate
from schemas.order import Pagination
from services import delivery as delivery_service

router = APIRouter(prefix="/driver/shipments", tags=["driver"])


@router.get("", response_model=DeliveryList)
def list_shipments(
    status: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    caller: CallerContext = Depends(require_permission(Operation.VIEW_DELIVERIES)),
    db: Session = Depends(get_db),
):
    deliveries, total = delivery_service.list_driver_deliveries(db, caller, status=status, page=page, limit=limit)
    return {
        "deliveries": deliveries,
        "pagination": Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
    }


@router.get("/{delivery_id}", response_model=DeliveryEnvelope)
def get_shipment(
    delivery_id: int,
    caller: CallerContext = Depends(require_permission(Operation.VIEW_DELIVERIES)),
    db: Session = Depends(get_db),
):
    return {"delivery": delivery_service.get_delivery_for_caller(db, delivery_id, caller)}


@router.post("/{delivery_id}/accept", response_model=DeliveryEnvelope)
def accept_shipment(
    delivery_id: int,
    caller: CallerContext = Depends(require_permission(Operation.ACCEPT_DELIVERY)),
    db: Session = Depends(get_db),
):
    delivery = delivery_service.accept_delivery(db, delivery_id, caller)
    return {"delivery": delivery, "message": "Shipment accepted successfully"}


@router.patch("/{delivery_id}", response_model=DeliveryEnvelope)
def update_shipment_status(
    delivery_id: int,
    data: DeliveryStatusUpdate,
    caller: CallerContext = Depends(require_permission(Operation.UPDATE_DELIVERY_STATUS)),
    db: Session = Depends(get_db),
):
    delivery = delivery_service.update_delivery_status(db, delivery_id, data.status, caller)
    return {"delivery": delivery}
