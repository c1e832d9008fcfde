import math
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from core.config import settings
from core.db import get_db
from core.permissions import CallerContext, Operation, require_permission
from schemas.order import (
    BulkOrderResult,
    BulkOrderUpdate,
    MessageOut,
    OrderCreate,
    OrderEnvelope,
    OrderList,
    OrderStatusUpdate,
    Pagination,
)
from services import checkout, order_export, order_lifecycle

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=OrderEnvelope, status_code=201)
def place_order(
    data: OrderCreate,
    caller: CallerContext = Depends(require_permission(Operation.PLACE_ORDER)),
    db: Session = Depends(get_db),
):
    order = checkout.place_order(db, caller, data.items, data.shipping_address_id, data.notes)
    return {"order": order}


@router.get("", response_model=OrderList)
def list_orders(
    status: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: Optional[int] = Query(default=None, ge=1, le=200),
    caller: CallerContext = Depends(require_permission(Operation.VIEW_ORDER)),
    db: Session = Depends(get_db),
):
    limit = limit or settings.DEFAULT_PAGE_SIZE
    orders, total = order_lifecycle.list_orders_for_caller(db, caller, status=status, page=page, limit=limit)
    return {
        "orders": orders,
        "pagination": Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
        "status_counts": order_lifecycle.status_counts(db, caller),
    }


@router.patch("", response_model=BulkOrderResult)
def bulk_update_orders(
    data: BulkOrderUpdate,
    caller: CallerContext = Depends(require_permission(Operation.BULK_UPDATE_ORDERS)),
    db: Session = Depends(get_db),
):
    return order_lifecycle.bulk_update_order_status(db, data.order_ids, data.action, caller, status=data.status)


@router.get("/export")
def export_orders(
    format: str = "csv",
    status: Optional[str] = None,
    caller: CallerContext = Depends(require_permission(Operation.EXPORT_ORDERS)),
    db: Session = Depends(get_db),
):
    body, media_type = order_export.export_orders(db, format, status)
    extension = "json" if media_type == "application/json" else "csv"
    return Response(
        content=body,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="orders.{extension}"'},
    )


@router.get("/{order_id}", response_model=OrderEnvelope)
def get_order(
    order_id: int,
    caller: CallerContext = Depends(require_permission(Operation.VIEW_ORDER)),
    db: Session = Depends(get_db),
):
    return {"order": order_lifecycle.get_order_for_caller(db, order_id, caller)}


@router.patch("/{order_id}", response_model=OrderEnvelope)
def update_order_status(
    order_id: int,
    data: OrderStatusUpdate,
    caller: CallerContext = Depends(require_permission(Operation.UPDATE_ORDER_STATUS)),
    db: Session = Depends(get_db),
):
    order = order_lifecycle.update_order_status(db, order_id, data.status, caller, notes=data.notes)
    return {"order": order}


@router.delete("/{order_id}", response_model=MessageOut)
def cancel_order(
    order_id: int,
    caller: CallerContext = Depends(require_permission(Operation.CANCEL_ORDER)),
    db: Session = Depends(get_db),
):
    order_lifecycle.cancel_order(db, order_id, caller)
    return {"message": "Order cancelled successfully"}
