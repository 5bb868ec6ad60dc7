import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shared.events import publish
from shared.security import require_user_id

from .catalog import ProductService
from .config import Settings, load_settings
from .db import make_engine, make_session_factory, init_schema
from .domain import OrderLine
from .errors import (
    InsufficientStock,
    InvalidCredentials,
    NotFound,
    OperationTimeout,
    ProductNotFound,
    StoreError,
    TransactionError,
    UserAlreadyExists,
)
from .orders import OrderService
from .repositories import SqlOrderRepository, SqlProductRepository, SqlUserRepository
from .schemas import (
    LoginIn,
    OrderCreateIn,
    OrderOut,
    ProductCreate,
    ProductOut,
    ProductUpdate,
    RegisterIn,
    TokenOut,
    UserOut,
)
from .users import UserService

logger = logging.getLogger("shop-service")


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


# ---------- dependencies ----------

def get_users(request: Request) -> UserService:
    return request.app.state.users


def get_products(request: Request) -> ProductService:
    return request.app.state.products


def get_orders(request: Request) -> OrderService:
    return request.app.state.orders


# ---------- error mapping ----------

def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFound)
    async def _not_found(request: Request, exc: NotFound):
        if isinstance(exc, ProductNotFound) and request.url.path.startswith("/orders"):
            return JSONResponse(status_code=404, content={"detail": "one or more products not found"})
        return JSONResponse(status_code=404, content={"detail": "Not found"})

    @app.exception_handler(InsufficientStock)
    async def _insufficient_stock(request: Request, exc: InsufficientStock):
        return JSONResponse(
            status_code=409,
            content={"detail": "insufficient stock for one or more products", "product_id": str(exc.product_id)},
        )

    @app.exception_handler(UserAlreadyExists)
    async def _user_exists(request: Request, exc: UserAlreadyExists):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(InvalidCredentials)
    async def _invalid_credentials(request: Request, exc: InvalidCredentials):
        return JSONResponse(status_code=401, content={"detail": "Invalid email or password"})

    @app.exception_handler(OperationTimeout)
    async def _timeout(request: Request, exc: OperationTimeout):
        logger.warning("request timed out path=%s error=%s", request.url.path, exc)
        return JSONResponse(status_code=503, content={"detail": "Service busy, try again"})

    @app.exception_handler(TransactionError)
    @app.exception_handler(StoreError)
    async def _server_error(request: Request, exc: Exception):
        logger.error("request failed path=%s error=%r", request.url.path, exc)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# ---------- app factory ----------

def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings)

    engine = make_engine(
        settings.database_url,
        schema=settings.db_schema,
        pool_size=settings.db_pool_size,
        echo=settings.db_echo,
    )
    session_factory = make_session_factory(engine)

    user_repo = SqlUserRepository(session_factory)
    product_repo = SqlProductRepository(session_factory)
    order_repo = SqlOrderRepository(session_factory)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Prefer deploy-time migrations in prod; create tables for local/dev.
        if settings.env != "prod":
            init_schema(engine, settings.db_schema)
        logger.info("shop-service started env=%s", settings.env)
        yield
        engine.dispose()

    app = FastAPI(title="shop-service", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.users = UserService(user_repo, publish=publish)
    app.state.products = ProductService(session_factory, product_repo)
    app.state.orders = OrderService(
        session_factory,
        product_repo,
        order_repo,
        publish=publish,
        lock_timeout=settings.order_lock_timeout,
    )

    _install_error_handlers(app)
    _install_routes(app)
    return app


def _install_routes(app: FastAPI) -> None:
    @app.get("/health")
    def health():
        return {"ok": True}

    # users

    @app.post("/users/register", response_model=UserOut, status_code=201)
    def register(payload: RegisterIn, users: UserService = Depends(get_users)):
        return users.register(
            email=payload.email,
            password=payload.password,
            firstname=payload.firstname,
            lastname=payload.lastname,
            age=payload.age,
            is_married=payload.is_married,
        )

    @app.post("/users/login", response_model=TokenOut)
    def login(payload: LoginIn, users: UserService = Depends(get_users)):
        return TokenOut(access_token=users.login(payload.email, payload.password))

    @app.get("/users/me", response_model=UserOut)
    def me(user_id: uuid.UUID = Depends(require_user_id), users: UserService = Depends(get_users)):
        return users.get_user(user_id)

    # products

    @app.post("/products", response_model=ProductOut, status_code=201)
    def create_product(
        payload: ProductCreate,
        _: uuid.UUID = Depends(require_user_id),
        products: ProductService = Depends(get_products),
    ):
        return products.create_product(payload.description, payload.tags, payload.quantity, payload.price)

    @app.get("/products", response_model=list[ProductOut])
    def get_products_by_ids(
        ids: list[uuid.UUID] = Query(min_length=1),
        _: uuid.UUID = Depends(require_user_id),
        products: ProductService = Depends(get_products),
    ):
        return products.get_products(ids)

    @app.get("/products/{product_id}", response_model=ProductOut)
    def get_product(
        product_id: uuid.UUID,
        _: uuid.UUID = Depends(require_user_id),
        products: ProductService = Depends(get_products),
    ):
        return products.get_product(product_id)

    @app.patch("/products/{product_id}", response_model=ProductOut)
    def update_product(
        product_id: uuid.UUID,
        payload: ProductUpdate,
        _: uuid.UUID = Depends(require_user_id),
        products: ProductService = Depends(get_products),
    ):
        return products.update_product(
            product_id,
            description=payload.description,
            tags=payload.tags,
            quantity=payload.quantity,
            price=payload.price,
        )

    # orders

    @app.post("/orders", response_model=OrderOut, status_code=201)
    def create_order(
        payload: OrderCreateIn,
        user_id: uuid.UUID = Depends(require_user_id),
        orders: OrderService = Depends(get_orders),
    ):
        lines = [OrderLine(product_id=it.product_id, quantity=it.quantity) for it in payload.items]
        return orders.create_order(user_id, lines)

    @app.get("/orders", response_model=list[OrderOut])
    def list_orders(
        user_id: uuid.UUID = Depends(require_user_id),
        orders: OrderService = Depends(get_orders),
    ):
        return orders.list_user_orders(user_id)

    @app.get("/orders/{order_id}", response_model=OrderOut)
    def get_order(
        order_id: uuid.UUID,
        user_id: uuid.UUID = Depends(require_user_id),
        orders: OrderService = Depends(get_orders),
    ):
        return orders.get_user_order(user_id, order_id)


# uvicorn app.main:app (reads DATABASE_URL and JWT_SECRET at import)
app = create_app()
