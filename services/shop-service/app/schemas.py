import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

MAX_PASSWORD_BYTES = 4096


def _validate_password(pw: str) -> str:
    if pw is None or pw == "":
        raise ValueError("Password is required")
    if len(pw.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password too long (max {MAX_PASSWORD_BYTES} bytes)")
    return pw


# ---------- users ----------

class RegisterIn(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    firstname: str = Field(min_length=1, max_length=255)
    lastname: str = Field(min_length=1, max_length=255)
    age: int = Field(ge=18)
    is_married: bool = False

    @field_validator("password")
    @classmethod
    def password_ok(cls, v: str) -> str:
        return _validate_password(v)


class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)

    @field_validator("password")
    @classmethod
    def password_ok(cls, v: str) -> str:
        return _validate_password(v)


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserOut(BaseModel):
    id: uuid.UUID
    email: EmailStr
    firstname: str
    lastname: str
    age: int
    is_married: bool

    model_config = ConfigDict(from_attributes=True)


# ---------- products ----------

class ProductCreate(BaseModel):
    description: str = Field(min_length=1)
    tags: list[str] = Field(default_factory=list)
    quantity: int = Field(ge=0)
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)


class ProductUpdate(BaseModel):
    description: str | None = Field(default=None, min_length=1)
    tags: list[str] | None = None
    quantity: int | None = Field(default=None, ge=0)
    price: Decimal | None = Field(default=None, ge=0, max_digits=10, decimal_places=2)


class ProductOut(BaseModel):
    id: uuid.UUID
    description: str
    tags: list[str]
    quantity: int
    price: Decimal

    model_config = ConfigDict(from_attributes=True)


# ---------- orders ----------

class OrderItemIn(BaseModel):
    product_id: uuid.UUID
    quantity: int = Field(gt=0)


class OrderCreateIn(BaseModel):
    items: list[OrderItemIn] = Field(min_length=1)


class OrderItemOut(BaseModel):
    id: uuid.UUID
    product_id: uuid.UUID
    quantity: int
    price_at_purchase: Decimal

    model_config = ConfigDict(from_attributes=True)


class OrderOut(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    created_at: datetime
    total_amount: Decimal
    items: list[OrderItemOut]

    model_config = ConfigDict(from_attributes=True)
