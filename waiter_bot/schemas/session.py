"""
Session state schemas.

SessionState is the whole persisted record for one (tenant, user) pair. It is
serialized to JSON for storage and only ever changed inside SessionStore.save.
"""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class DialogueState(str, Enum):
    """Advisory conversation phase. Biases disambiguation, never enforces rules."""
    GREETING = "greeting"
    MENU_EXPLORATION = "menu_exploration"
    ITEM_SELECTION = "item_selection"
    CART_REVIEW = "cart_review"
    CHECKOUT_CONFIRMATION = "checkout_confirmation"
    ORDER_CONFIRMED = "order_confirmed"
    ERROR_RECOVERY = "error_recovery"


class ContextType(str, Enum):
    """What kind of reply the assistant gave last."""
    MENU_LISTING = "menu_listing"
    RECOMMENDATION = "recommendation"
    CONVERSATION = "conversation"


class CartLine(BaseModel):
    """One resolved menu item in the cart. unit_price is pinned at add time."""

    item_id: str
    title: str
    qty: int = Field(ge=1)
    unit_price: float = Field(ge=0)

    @property
    def subtotal(self) -> float:
        return self.qty * self.unit_price


class Message(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    # Set on user messages whose items were already put in the cart
    applied: bool = False


class SessionState(BaseModel):
    """Persisted conversation state for one (tenant, user)."""

    tenant_id: str
    user_id: str
    cart: list[CartLine] = Field(default_factory=list)
    history: list[Message] = Field(default_factory=list)
    dialogue_state: DialogueState = DialogueState.GREETING
    last_suggested: list[str] = Field(default_factory=list)  # item_ids
    awaiting_confirmation: bool = False
    last_context_type: ContextType = ContextType.CONVERSATION
    last_intent: str | None = None
    last_active: float = 0.0
    version: int = 0

    def cart_total(self) -> float:
        return sum(line.subtotal for line in self.cart)

    def last_assistant_message(self) -> str | None:
        for message in reversed(self.history):
            if message.role == "assistant":
                return message.content
        return None

    def append_history(self, role: str, content: str, limit: int, applied: bool = False) -> None:
        """Append a message and trim the window to the last `limit` messages."""
        self.history.append(Message(role=role, content=content, applied=applied))
        if limit > 0 and len(self.history) > limit:
            del self.history[: len(self.history) - limit]
