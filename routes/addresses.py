from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.db import get_db
from core.permissions import CallerContext, Operation, require_permission
from models.address import Address
from schemas.address import AddressCreate, AddressOut

router = APIRouter(prefix="/addresses", tags=["addresses"])


@router.get("", response_model=List[AddressOut])
def list_addresses(
    caller: CallerContext = Depends(require_permission(Operation.MANAGE_ADDRESSES)),
    db: Session = Depends(get_db),
):
    return db.query(Address).filter(Address.user_id == caller.user_id).order_by(Address.id).all()


@router.post("", response_model=AddressOut, status_code=201)
def create_address(
    data: AddressCreate,
    caller: CallerContext = Depends(require_permission(Operation.MANAGE_ADDRESSES)),
    db: Session = Depends(get_db),
):
    address = Address(user_id=caller.user_id, **data.model_dump())
    db.add(address)
    db.commit()
    db.refresh(address)
    return address
