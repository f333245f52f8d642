from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from .config import DATABASE_URL
from .models import Base


def make_engine(url: str = DATABASE_URL):
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    engine = create_engine(url, connect_args={"check_same_thread": False, "timeout": 30})

    # pysqlite opens transactions lazily and as DEFERRED, so two checkouts can
    # both hold SHARED and deadlock on upgrade. Take the write lock up front.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


engine = make_engine()    # Connecting to the database
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)   #A temporary connection to work with the database.


def init_db(bind=None) -> None:
    Base.metadata.create_all(bind=bind or engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
