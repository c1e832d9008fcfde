from typing import Optional

from pydantic import BaseModel, Field


class AddressCreate(BaseModel):
    street: str = Field(min_length=1, max_length=255)
    city: str = Field(min_length=1, max_length=100)
    state: Optional[str] = Field(default=None, max_length=100)
    postal_code: str = Field(min_length=1, max_length=20)
    country: str = Field(default="US", max_length=100)


class AddressOut(AddressCreate):
    id: int

    class Config:
        from_attributes = True
