"""
Boundary shapes for one chat turn.

Channel adapters (web widget, WhatsApp webhook) translate their own payloads
into InboundMessage and render OutboundReply back out.
"""

from pydantic import BaseModel, Field

from ..config import MAX_MESSAGE_LENGTH


class InboundMessage(BaseModel):
    """A user message addressed to a tenant."""

    tenant_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    text: str = Field(..., max_length=MAX_MESSAGE_LENGTH)


class CartSnapshotLine(BaseModel):
    title: str
    qty: int


class CartSnapshot(BaseModel):
    item_count: int = 0
    lines: list[CartSnapshotLine] = Field(default_factory=list)


class OutboundReply(BaseModel):
    """What the channel adapter sends back to the user."""

    reply_text: str
    intent: str
    cart_snapshot: CartSnapshot = Field(default_factory=CartSnapshot)
    session_key: str
    order_id: str | None = None
