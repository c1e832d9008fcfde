import logging

import jwt as pyjwt
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.db import get_db
from core.errors import Forbidden, InvalidRequest, NotFound, Unauthenticated
from core.permissions import get_current_user
from models.enums import Role
from models.profile import BuyerProfile, DriverProfile, SellerProfile
from models.user import User
from schemas.auth import RegisterRequest, LoginRequest, TokenPair, RefreshTokenRequest
from schemas.users import UserOut
from security.password import hash_password, verify_password
from security import jwt as jwt_utils

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _issue_tokens(user: User) -> TokenPair:
    access = jwt_utils.create_access_token(str(user.id), role=user.role.value)
    refresh = jwt_utils.create_refresh_token(str(user.id))
    return TokenPair(access_token=access, refresh_token=refresh)


def _profile_for(data: RegisterRequest):
    if data.role is Role.SELLER:
        if not data.business_name:
            raise InvalidRequest("Business name is required for sellers")
        return SellerProfile(business_name=data.business_name.strip(), business_phone=data.phone)
    if data.role is Role.DRIVER:
        return DriverProfile(vehicle_type=data.vehicle_type, license_plate=data.license_plate, is_available=True)
    if data.role is Role.BUYER:
        return BuyerProfile(phone=data.phone)
    return None


@router.post("/register", response_model=UserOut, status_code=201)
def register(data: RegisterRequest, db: Session = Depends(get_db)):
    if data.role is Role.ADMIN:
        raise Forbidden("Admin accounts cannot be self-registered")
    existing = db.query(User).filter(User.email == data.email.lower()).one_or_none()
    if existing:
        raise InvalidRequest("Email already registered")
    user = User(
        first_name=data.first_name.strip(),
        last_name=data.last_name.strip(),
        email=data.email.lower(),
        password_hash=hash_password(data.password),
        role=data.role,
    )
    profile = _profile_for(data)
    if isinstance(profile, SellerProfile):
        user.seller_profile = profile
    elif isinstance(profile, DriverProfile):
        user.driver_profile = profile
    elif isinstance(profile, BuyerProfile):
        user.buyer_profile = profile
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Registered %s user %s", user.role.value, user.id)
    return user


@router.post("/login", response_model=TokenPair)
def login(data: LoginRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == data.email.lower()).one_or_none()
    if not user or not verify_password(data.password, user.password_hash):
        raise InvalidRequest("Invalid credentials")
    if not user.is_active:
        raise Forbidden("Account deactivated")
    return _issue_tokens(user)


@router.post("/refresh-token", response_model=TokenPair)
def refresh_token(data: RefreshTokenRequest, db: Session = Depends(get_db)):
    try:
        payload = jwt_utils.decode_refresh(data.refresh_token)
    except pyjwt.PyJWTError:
        raise Unauthenticated("Invalid refresh token")
    user_id = payload.get("sub")
    if user_id is None or not str(user_id).isdigit():
        raise Unauthenticated("Invalid refresh token")
    user = db.query(User).filter(User.id == int(user_id)).one_or_none()
    if not user or not user.is_active:
        raise NotFound("User not found")
    return _issue_tokens(user)


@router.get("/me", response_model=UserOut)
def me(current_user: User = Depends(get_current_user)):
    return current_user
