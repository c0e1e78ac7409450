"""
Database connection management.

Sessions and orders share one SQLAlchemy engine built from DATABASE_URL.
Tests and embedding applications can build their own engine and pass a
sessionmaker to SessionStore / SqlOrderSink instead.

Environment variables:
    - DATABASE_URL: SQLAlchemy URL (default: sqlite:///./waiter_bot.db)
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .config import DATABASE_URL
from .models import Base


def make_engine(url: str = DATABASE_URL) -> Engine:
    connect_args = {}
    if url.startswith("sqlite"):
        # Session sweeps run on their own thread
        connect_args["check_same_thread"] = False
    return create_engine(
        url,
        pool_pre_ping=True,
        echo=False,
        connect_args=connect_args,
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
    )


def init_db(engine: Engine) -> None:
    """Create the session and order tables if they do not exist."""
    Base.metadata.create_all(bind=engine)
