"""
Order projection handed to the OrderSink at checkout.
"""

from pydantic import BaseModel, Field


class OrderLine(BaseModel):
    item_id: str
    title: str
    qty: int
    unit_price: float
    subtotal: float


class OrderProjection(BaseModel):
    """Immutable picture of the cart at the moment the user confirmed checkout."""

    tenant_id: str
    user_id: str
    lines: list[OrderLine] = Field(default_factory=list)
    total: float = 0.0
