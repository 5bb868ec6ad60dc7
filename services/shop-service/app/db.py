from sqlalchemy import create_engine, text, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase


class Base(DeclarativeBase):
    pass


def _quote_ident(ident: str) -> str:
    # Safe-ish quoting for Postgres identifiers (schema/table)
    return '"' + ident.replace('"', '""') + '"'


def is_postgres(engine: Engine) -> bool:
    return engine.dialect.name == "postgresql"


def make_engine(
    database_url: str,
    schema: str = "shop",
    pool_size: int = 5,
    echo: bool = False,
    busy_timeout: float = 30,
) -> Engine:
    if database_url.startswith("sqlite"):
        # busy_timeout: seconds a writer waits on BEGIN IMMEDIATE
        engine = create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": busy_timeout},
        )
        _install_sqlite_hooks(engine)
        return engine

    engine = create_engine(
        database_url,
        echo=echo,
        pool_size=pool_size,
        pool_pre_ping=True,
    )
    _install_search_path(engine, schema)
    return engine


def _install_search_path(engine: Engine, schema: str) -> None:
    @event.listens_for(engine, "connect")
    def _set_search_path(dbapi_conn, _):
        # Ensures every new connection uses the schema
        cur = dbapi_conn.cursor()
        cur.execute(f"SET search_path TO {_quote_ident(schema)}, public")
        cur.close()
        dbapi_conn.commit()


def _install_sqlite_hooks(engine: Engine) -> None:
    # pysqlite defers BEGIN until the first write; take the write lock up front
    # so concurrent order transactions queue the way row locks do on Postgres.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, _):
        dbapi_conn.isolation_level = None
        cur = dbapi_conn.cursor()
        cur.execute("PRAGMA foreign_keys=ON")
        cur.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def init_schema(engine: Engine, schema: str = "shop") -> None:
    """
    Create the schema (Postgres only) and all tables.
    Prefer running migrations at deploy-time; this is for local/dev and tests.
    """
    from . import models  # noqa: F401  registers the tables on Base

    if is_postgres(engine):
        with engine.begin() as conn:
            conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {_quote_ident(schema)}"))
    Base.metadata.create_all(bind=engine)
