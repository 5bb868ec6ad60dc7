import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal


@dataclass
class User:
    id: uuid.UUID
    email: str
    password_hash: str
    firstname: str = ""
    lastname: str = ""
    age: int = 0
    is_married: bool = False
    created_at: datetime | None = None


@dataclass
class Product:
    id: uuid.UUID
    description: str
    tags: list[str] = field(default_factory=list)
    quantity: int = 0  # units in stock, never negative
    price: Decimal = Decimal("0.00")


@dataclass
class OrderItem:
    id: uuid.UUID
    product_id: uuid.UUID
    quantity: int
    # snapshot of Product.price taken under the row lock
    price_at_purchase: Decimal


@dataclass
class Order:
    id: uuid.UUID
    user_id: uuid.UUID
    created_at: datetime
    items: list[OrderItem] = field(default_factory=list)
    total_amount: Decimal = Decimal("0.00")


@dataclass(frozen=True)
class OrderLine:
    """One requested (product, quantity) pair, validated at the boundary."""

    product_id: uuid.UUID
    quantity: int
