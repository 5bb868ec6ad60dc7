import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Sequence

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .db import is_postgres
from .domain import Order, OrderItem, OrderLine, Product
from .errors import InsufficientStock, OperationTimeout, OrderNotFound, TransactionError
from .repositories import OrderRepository, ProductRepository, is_timeout, translate

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")

Publisher = Callable[..., None]


class OrderService:
    """
    Order placement.

    Stock is reserved with pessimistic row locks: every product in the order is
    read ``FOR UPDATE`` inside one transaction, so two orders racing for the
    same units are serialised by the database and the loser sees the
    decremented quantity. Products are locked in ascending id order no matter
    how the caller listed them, which keeps concurrent multi-item orders from
    deadlocking each other. Nothing is retried here.

    All locks are taken before any line is checked, so a request naming a
    missing product fails with ProductNotFound even when an earlier line is
    also short of stock.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        products: ProductRepository,
        orders: OrderRepository,
        publish: Publisher | None = None,
        lock_timeout: float | None = None,
    ):
        self._session_factory = session_factory
        self._products = products
        self._orders = orders
        self._publish = publish
        self._lock_timeout = lock_timeout

    def create_order(
        self,
        user_id: uuid.UUID,
        items: Sequence[OrderLine],
        timeout: float | None = None,
    ) -> Order:
        if not items:
            raise ValueError("order must contain at least one item")

        session: Session = self._session_factory()
        try:
            try:
                session.begin()
                session.connection()
                self._apply_timeout(session, timeout if timeout is not None else self._lock_timeout)
            except SQLAlchemyError as e:
                if is_timeout(e):
                    # SQLite: BEGIN IMMEDIATE gave up waiting for the write lock
                    raise OperationTimeout("could not begin transaction: timed out waiting for the database") from e
                raise TransactionError("could not begin transaction") from e

            try:
                order = self._reserve_and_record(session, user_id, items)
            except SQLAlchemyError as e:
                err = translate("orders.create_order", e)
                self._rollback(session, err)
                raise err from e
            except Exception as e:
                self._rollback(session, e)
                raise

            try:
                session.commit()
            except SQLAlchemyError as e:
                err = translate("orders.commit", e)
                if not isinstance(err, TransactionError):
                    err = TransactionError("could not commit transaction")
                self._rollback(session, err)
                raise err from e
        finally:
            session.close()

        logger.info(
            "order created order_id=%s user_id=%s items=%d total=%s",
            order.id, user_id, len(order.items), order.total_amount,
        )
        self._emit_created(order)
        return order

    def get_order(self, order_id: uuid.UUID) -> Order:
        return self._orders.find_by_id(order_id)

    def get_user_order(self, user_id: uuid.UUID, order_id: uuid.UUID) -> Order:
        order = self._orders.find_by_id(order_id)
        if order.user_id != user_id:
            # don't reveal other users' orders
            raise OrderNotFound(order_id)
        return order

    def list_user_orders(self, user_id: uuid.UUID) -> list[Order]:
        return self._orders.find_by_user(user_id)

    def _reserve_and_record(self, tx: Session, user_id: uuid.UUID, items: Sequence[OrderLine]) -> Order:
        order = Order(
            id=uuid.uuid4(),
            user_id=user_id,
            created_at=datetime.now(timezone.utc),
        )

        locked: dict[uuid.UUID, Product] = {}
        for product_id in sorted({it.product_id for it in items}):
            locked[product_id] = self._products.find_by_id_for_update(tx, product_id)

        total = Decimal("0")
        for it in items:
            product = locked[it.product_id]
            # checked under the lock, nobody else can move quantity now
            if product.quantity < it.quantity:
                logger.warning(
                    "insufficient stock product_id=%s requested=%d available=%d",
                    product.id, it.quantity, product.quantity,
                )
                raise InsufficientStock(product.id, it.quantity, product.quantity)

            product.quantity -= it.quantity
            self._products.update_quantity_tx(tx, product)

            order.items.append(
                OrderItem(
                    id=uuid.uuid4(),
                    product_id=product.id,
                    quantity=it.quantity,
                    price_at_purchase=product.price,
                )
            )
            total += product.price * it.quantity

        order.total_amount = total.quantize(CENTS)
        self._orders.create_tx(tx, order)
        return order

    def _apply_timeout(self, tx: Session, timeout: float | None) -> None:
        if not timeout or not is_postgres(tx.get_bind()):
            return
        ms = max(1, int(timeout * 1000))
        tx.execute(text(f"SET LOCAL lock_timeout = {ms}"))
        tx.execute(text(f"SET LOCAL statement_timeout = {ms}"))

    @staticmethod
    def _rollback(tx: Session, original: BaseException) -> None:
        try:
            tx.rollback()
        except Exception as rb_err:
            # keep the original error; the rollback failure is diagnostic only
            logger.error(
                "error rolling back transaction rollback_error=%r original_error=%r",
                rb_err, original,
            )
            original.add_note(f"rollback failed: {rb_err!r}")

    def _emit_created(self, order: Order) -> None:
        if self._publish is None:
            return
        self._publish(
            "order.created",
            {
                "order_id": str(order.id),
                "user_id": str(order.user_id),
                "total_amount": str(order.total_amount),
                "items": [
                    {"product_id": str(i.product_id), "quantity": i.quantity}
                    for i in order.items
                ],
            },
            safe=True,
        )
