import uuid
from abc import ABC, abstractmethod
from typing import Iterable

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .domain import Order, OrderItem, Product, User
from .errors import (
    OperationTimeout,
    OrderNotFound,
    ProductNotFound,
    StoreError,
    UserAlreadyExists,
    UserNotFound,
)
from .models import OrderItemRow, OrderRow, ProductRow, UserRow

# lock_not_available, query_canceled
_PG_TIMEOUT_CODES = {"55P03", "57014"}


def is_timeout(exc: BaseException) -> bool:
    if not isinstance(exc, OperationalError):
        return False
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code in _PG_TIMEOUT_CODES:
        return True
    return "database is locked" in str(orig)


def translate(op: str, exc: SQLAlchemyError) -> Exception:
    if is_timeout(exc):
        return OperationTimeout(f"{op}: timed out waiting for the database")
    return StoreError(op, exc)


# ---------- Capability sets ----------

class UserRepository(ABC):
    @abstractmethod
    def create(self, user: User) -> None: ...

    @abstractmethod
    def find_by_id(self, user_id: uuid.UUID) -> User: ...

    @abstractmethod
    def find_by_email(self, email: str) -> User: ...


class ProductRepository(ABC):
    """
    Catalog persistence. Methods taking ``tx`` run inside the caller's
    transaction and never commit or roll back themselves.
    """

    @abstractmethod
    def create(self, product: Product) -> None: ...

    @abstractmethod
    def find_by_id(self, product_id: uuid.UUID) -> Product: ...

    @abstractmethod
    def find_by_ids(self, product_ids: Iterable[uuid.UUID]) -> list[Product]: ...

    @abstractmethod
    def update(self, product: Product) -> None: ...

    @abstractmethod
    def find_by_id_for_update(self, tx: Session, product_id: uuid.UUID) -> Product: ...

    @abstractmethod
    def update_quantity_tx(self, tx: Session, product: Product) -> None: ...

    @abstractmethod
    def update_tx(self, tx: Session, product: Product) -> None: ...


class OrderRepository(ABC):
    @abstractmethod
    def create_tx(self, tx: Session, order: Order) -> None: ...

    @abstractmethod
    def find_by_id(self, order_id: uuid.UUID) -> Order: ...

    @abstractmethod
    def find_by_user(self, user_id: uuid.UUID) -> list[Order]: ...


# ---------- SQLAlchemy adapters ----------

class SqlUserRepository(UserRepository):
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def create(self, user: User) -> None:
        try:
            with self._session_factory() as s, s.begin():
                s.add(_user_to_row(user))
        except IntegrityError as e:
            raise UserAlreadyExists(user.email) from e
        except SQLAlchemyError as e:
            raise translate("users.create", e) from e

    def find_by_id(self, user_id: uuid.UUID) -> User:
        try:
            with self._session_factory() as s:
                row = s.get(UserRow, user_id)
        except SQLAlchemyError as e:
            raise translate("users.find_by_id", e) from e
        if row is None:
            raise UserNotFound(user_id=user_id)
        return _user_to_model(row)

    def find_by_email(self, email: str) -> User:
        try:
            with self._session_factory() as s:
                row = s.execute(select(UserRow).where(UserRow.email == email)).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise translate("users.find_by_email", e) from e
        if row is None:
            raise UserNotFound(email=email)
        return _user_to_model(row)


class SqlProductRepository(ProductRepository):
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def create(self, product: Product) -> None:
        try:
            with self._session_factory() as s, s.begin():
                s.add(
                    ProductRow(
                        id=product.id,
                        description=product.description,
                        tags=list(product.tags),
                        quantity=product.quantity,
                        price=product.price,
                    )
                )
        except SQLAlchemyError as e:
            raise translate("products.create", e) from e

    def find_by_id(self, product_id: uuid.UUID) -> Product:
        try:
            with self._session_factory() as s:
                row = s.get(ProductRow, product_id)
        except SQLAlchemyError as e:
            raise translate("products.find_by_id", e) from e
        if row is None:
            raise ProductNotFound(product_id)
        return _product_to_model(row)

    def find_by_ids(self, product_ids: Iterable[uuid.UUID]) -> list[Product]:
        ids = list(product_ids)
        if not ids:
            raise ProductNotFound()
        try:
            with self._session_factory() as s:
                rows = s.execute(select(ProductRow).where(ProductRow.id.in_(ids))).scalars().all()
        except SQLAlchemyError as e:
            raise translate("products.find_by_ids", e) from e
        if not rows:
            raise ProductNotFound()
        return [_product_to_model(r) for r in rows]

    def update(self, product: Product) -> None:
        try:
            with self._session_factory() as s, s.begin():
                res = s.execute(_full_update(product))
        except SQLAlchemyError as e:
            raise translate("products.update", e) from e
        if res.rowcount == 0:
            raise ProductNotFound(product.id)

    def update_tx(self, tx: Session, product: Product) -> None:
        try:
            res = tx.execute(_full_update(product))
        except SQLAlchemyError as e:
            raise translate("products.update_tx", e) from e
        if res.rowcount == 0:
            raise ProductNotFound(product.id)

    def find_by_id_for_update(self, tx: Session, product_id: uuid.UUID) -> Product:
        # SELECT ... FOR UPDATE: the row stays locked until tx ends
        stmt = (
            select(ProductRow)
            .where(ProductRow.id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        try:
            row = tx.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise translate("products.find_by_id_for_update", e) from e
        if row is None:
            raise ProductNotFound(product_id)
        return _product_to_model(row)

    def update_quantity_tx(self, tx: Session, product: Product) -> None:
        stmt = (
            update(ProductRow)
            .where(ProductRow.id == product.id)
            .values(quantity=product.quantity)
            .execution_options(synchronize_session=False)
        )
        try:
            res = tx.execute(stmt)
        except SQLAlchemyError as e:
            raise translate("products.update_quantity_tx", e) from e
        if res.rowcount == 0:
            raise ProductNotFound(product.id)


class SqlOrderRepository(OrderRepository):
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def create_tx(self, tx: Session, order: Order) -> None:
        # No cleanup on failure: the caller's transaction rolls back.
        try:
            tx.add(
                OrderRow(
                    id=order.id,
                    user_id=order.user_id,
                    created_at=order.created_at,
                    total_amount=order.total_amount,
                )
            )
            tx.flush()
            for line_no, item in enumerate(order.items):
                tx.add(
                    OrderItemRow(
                        id=item.id,
                        order_id=order.id,
                        product_id=item.product_id,
                        line_no=line_no,
                        quantity=item.quantity,
                        price_at_purchase=item.price_at_purchase,
                    )
                )
                tx.flush()
        except SQLAlchemyError as e:
            raise translate("orders.create_tx", e) from e

    def find_by_id(self, order_id: uuid.UUID) -> Order:
        try:
            with self._session_factory() as s:
                header = s.execute(select(OrderRow).where(OrderRow.id == order_id)).scalar_one_or_none()
                if header is None:
                    raise OrderNotFound(order_id)
                items = self._load_items(s, order_id)
        except SQLAlchemyError as e:
            raise translate("orders.find_by_id", e) from e
        return _order_to_model(header, items)

    def find_by_user(self, user_id: uuid.UUID) -> list[Order]:
        try:
            with self._session_factory() as s:
                headers = s.execute(
                    select(OrderRow)
                    .where(OrderRow.user_id == user_id)
                    .order_by(OrderRow.created_at.desc())
                ).scalars().all()
                return [_order_to_model(h, self._load_items(s, h.id)) for h in headers]
        except SQLAlchemyError as e:
            raise translate("orders.find_by_user", e) from e

    @staticmethod
    def _load_items(s: Session, order_id: uuid.UUID) -> list[OrderItemRow]:
        return list(
            s.execute(
                select(OrderItemRow)
                .where(OrderItemRow.order_id == order_id)
                .order_by(OrderItemRow.line_no)
            ).scalars().all()
        )


# ---------- Row <-> model ----------

def _full_update(product: Product):
    return (
        update(ProductRow)
        .where(ProductRow.id == product.id)
        .values(
            description=product.description,
            tags=list(product.tags),
            quantity=product.quantity,
            price=product.price,
        )
        .execution_options(synchronize_session=False)
    )


def _user_to_row(user: User) -> UserRow:
    return UserRow(
        id=user.id,
        firstname=user.firstname,
        lastname=user.lastname,
        email=user.email,
        age=user.age,
        is_married=user.is_married,
        password_hash=user.password_hash,
    )


def _user_to_model(row: UserRow) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        firstname=row.firstname,
        lastname=row.lastname,
        age=row.age,
        is_married=row.is_married,
        created_at=row.created_at,
    )


def _product_to_model(row: ProductRow) -> Product:
    return Product(
        id=row.id,
        description=row.description or "",
        tags=list(row.tags or []),
        quantity=row.quantity,
        price=row.price,
    )


def _order_to_model(header: OrderRow, items: list[OrderItemRow]) -> Order:
    return Order(
        id=header.id,
        user_id=header.user_id,
        created_at=header.created_at,
        total_amount=header.total_amount,
        items=[
            OrderItem(
                id=i.id,
                product_id=i.product_id,
                quantity=i.quantity,
                price_at_purchase=i.price_at_purchase,
            )
            for i in items
        ],
    )
