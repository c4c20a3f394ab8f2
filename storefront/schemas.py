# storefront/schemas.py
from datetime import datetime

from pydantic import BaseModel, EmailStr, Field
from pydantic.alias_generators import to_camel

from .models import RoleEnum


class CamelModel(BaseModel):
    """Accepts and emits camelCase keys, reads ORM objects."""

    class Config:
        from_attributes = True
        alias_generator = to_camel
        populate_by_name = True


class UserCreate(CamelModel):
    email: EmailStr
    password: str = Field(min_length=6)
    full_name: str = Field(min_length=1, max_length=100)
    phone: str = Field(min_length=5, max_length=20)
    house_number: str = Field(min_length=1)
    street: str = Field(min_length=1)
    area: str = Field(min_length=1)
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    pin_code: str = Field(min_length=3, max_length=10)


class AdminCreate(BaseModel):
    """Input of the createsuperuser script."""

    email: EmailStr
    password: str = Field(min_length=6)
    full_name: str = Field(min_length=1, max_length=100)
    phone: str = Field(min_length=5, max_length=20)


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class UserOut(CamelModel):
    id: int
    email: EmailStr
    full_name: str
    phone: str
    house_number: str
    street: str
    area: str
    city: str
    state: str
    pin_code: str
    role: RoleEnum
    created_at: datetime | None = None
