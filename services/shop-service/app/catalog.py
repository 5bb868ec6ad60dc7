import logging
import uuid
from decimal import Decimal
from typing import Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .domain import Product
from .repositories import ProductRepository, translate

logger = logging.getLogger(__name__)


class ProductService:
    def __init__(self, session_factory: sessionmaker, products: ProductRepository):
        self._session_factory = session_factory
        self._products = products

    def create_product(self, description: str, tags: list[str], quantity: int, price: Decimal) -> Product:
        product = Product(
            id=uuid.uuid4(),
            description=description,
            tags=list(tags),
            quantity=quantity,
            price=Decimal(price),
        )
        self._products.create(product)
        logger.info("product created product_id=%s quantity=%d price=%s", product.id, quantity, product.price)
        return product

    def get_product(self, product_id: uuid.UUID) -> Product:
        return self._products.find_by_id(product_id)

    def get_products(self, product_ids: Iterable[uuid.UUID]) -> list[Product]:
        return self._products.find_by_ids(product_ids)

    def update_product(
        self,
        product_id: uuid.UUID,
        description: str | None = None,
        tags: list[str] | None = None,
        quantity: int | None = None,
        price: Decimal | None = None,
    ) -> Product:
        """
        Partial update on top of the full-row store update.

        The row is read FOR UPDATE and written back in the same transaction,
        so an order committing in between cannot have its stock decrement
        overwritten. Not for stock reservation: orders go through OrderService.
        """
        try:
            with self._session_factory() as tx, tx.begin():
                p = self._products.find_by_id_for_update(tx, product_id)

                if description is not None: p.description = description
                if tags is not None: p.tags = list(tags)
                if quantity is not None: p.quantity = quantity
                if price is not None: p.price = Decimal(price)

                self._products.update_tx(tx, p)
        except SQLAlchemyError as e:
            raise translate("products.update", e) from e

        logger.info("product updated product_id=%s", product_id)
        return p
