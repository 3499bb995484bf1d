from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker


class Base(DeclarativeBase):
    pass


def _sqlite_immediate_transactions(engine: Engine) -> None:
    # pysqlite's deferred BEGIN can fail lock upgrades with SQLITE_BUSY instead of
    # waiting; taking the write lock up front makes concurrent writers queue.
    @event.listens_for(engine, "connect")
    def _connect(dbapi_conn, _record):
        dbapi_conn.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def make_engine(url: str, timeout_seconds: int = 5) -> Engine:
    # Every statement the gate runs must be bounded by timeout_seconds.
    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            connect_args={"timeout": timeout_seconds, "check_same_thread": False},
        )
        _sqlite_immediate_transactions(engine)
        return engine

    connect_args = {}
    if url.startswith("postgresql"):
        connect_args = {
            "connect_timeout": timeout_seconds,
            "options": f"-c statement_timeout={timeout_seconds * 1000}",
        }
    return create_engine(
        url,
        connect_args=connect_args,
        pool_pre_ping=True,
        pool_timeout=timeout_seconds,
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)
