from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from config import DATABASE_URL

Base = declarative_base()


def enable_sqlite_write_lock(engine: Engine) -> None:
    """Каждая транзакция SQLite начинается с BEGIN IMMEDIATE.

    Иначе pysqlite откладывает BEGIN до первой записи, и две сессии успевают
    проверить пересечения до вставки. С IMMEDIATE второй писатель ждет
    блокировку базы и читает уже свежие данные.
    """
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def make_engine(url: str) -> Engine:
    connect_args = {}

    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    elif ":6432" in url:
        connect_args = {
            "sslmode": "verify-full",
            "sslrootcert": "root.crt"
        }

    engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True)
    if url.startswith("sqlite"):
        enable_sqlite_write_lock(engine)
    return engine


engine = make_engine(DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
