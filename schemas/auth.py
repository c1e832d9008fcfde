from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from models.enums import Role


class RegisterRequest(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    role: Role = Role.BUYER
    # Role profile details
    business_name: Optional[str] = Field(default=None, max_length=200)
    vehicle_type: Optional[str] = Field(default=None, max_length=50)
    license_plate: Optional[str] = Field(default=None, max_length=20)
    phone: Optional[str] = Field(default=None, max_length=50)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class RefreshTokenRequest(BaseModel):
    refresh_token: str
