import uuid


class ShopError(Exception):
    pass


class NotFound(ShopError):
    pass


class ProductNotFound(NotFound):
    def __init__(self, product_id: uuid.UUID | None = None):
        self.product_id = product_id
        if product_id is None:
            super().__init__("product not found")
        else:
            super().__init__(f"product {product_id} not found")


class OrderNotFound(NotFound):
    def __init__(self, order_id: uuid.UUID):
        self.order_id = order_id
        super().__init__(f"order {order_id} not found")


class UserNotFound(NotFound):
    def __init__(self, user_id: uuid.UUID | None = None, email: str | None = None):
        self.user_id = user_id
        self.email = email
        super().__init__("user not found")


class InsufficientStock(ShopError):
    def __init__(self, product_id: uuid.UUID, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"insufficient stock for product {product_id}: "
            f"requested={requested} available={available}"
        )


class TransactionError(ShopError):
    """Begin, commit or rollback of a database transaction failed."""


class OperationTimeout(TransactionError):
    """A lock wait or statement exceeded the transaction's deadline."""


class StoreError(ShopError):
    """Any other persistence failure, tagged with the store operation."""

    def __init__(self, op: str, cause: BaseException | None = None):
        self.op = op
        self.cause = cause
        msg = op if cause is None else f"{op}: {cause}"
        super().__init__(msg)


class UserAlreadyExists(ShopError):
    def __init__(self, email: str):
        self.email = email
        super().__init__("user with this email already exists")


class InvalidCredentials(ShopError):
    def __init__(self):
        super().__init__("invalid credentials")
