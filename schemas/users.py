from pydantic import BaseModel, EmailStr

from models.enums import Role


class UserOut(BaseModel):
    id: int
    first_name: str
    last_name: str
    email: EmailStr
    role: Role
    is_active: bool

    class Config:
        from_attributes = True
