from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    JSON,
    DateTime,
    Index,
    func,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class ChatSession(Base):
    """Persisted conversation state for one (tenant, user) pair."""
    __tablename__ = "chat_sessions"

    id = Column(Integer, primary_key=True, index=True)
    session_key = Column(String, unique=True, index=True, nullable=False)  # "<tenant>:<user>"
    tenant_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=False)

    # Serialized SessionState (cart, history, flags)
    data = Column(JSON, nullable=False, default=dict)

    # Optimistic concurrency: every committed save increments this
    version = Column(Integer, nullable=False, default=0)

    # Epoch seconds of the last message; drives TTL expiry
    last_active = Column(Float, nullable=False, default=0.0, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=False)  # customer contact: phone number or widget id
    items = Column(JSON, nullable=False, default=list)  # [{item_id, title, qty, unit_price, subtotal}]
    total = Column(Float, nullable=False, default=0.0)
    status = Column(String, nullable=False, default="received", index=True)  # received/preparing/completed
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    __table_args__ = (
        Index("ix_orders_tenant_created_at", "tenant_id", "created_at"),
    )
