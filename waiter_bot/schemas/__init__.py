"""
Schemas Package for Waiter Bot
==============================

Pydantic models shared across the pipeline. Keeping them apart from the
services that use them avoids circular imports between the cart engine, the
session store and the orchestrator.

Schema Organization:
--------------------
- **menu.py**: Tenant menu items and per-tenant settings
- **session.py**: Persisted session state (cart, history, dialogue state)
- **chat.py**: Inbound message and outbound reply boundary shapes
- **orders.py**: Order projection handed to the order sink
- **llm.py**: Drafts, tagged LLM output and evaluation results
"""

from .menu import MenuItem, TenantConfig
from .session import (
    CartLine,
    ContextType,
    DialogueState,
    Message,
    SessionState,
)
from .chat import CartSnapshot, CartSnapshotLine, InboundMessage, OutboundReply
from .orders import OrderLine, OrderProjection
from .llm import (
    Draft,
    DraftItem,
    EvaluationResult,
    JudgeVerdict,
    LLMOutput,
    PlainTextOutput,
    StructuredOutput,
)

__all__ = [
    "MenuItem",
    "TenantConfig",
    "CartLine",
    "ContextType",
    "DialogueState",
    "Message",
    "SessionState",
    "CartSnapshot",
    "CartSnapshotLine",
    "InboundMessage",
    "OutboundReply",
    "OrderLine",
    "OrderProjection",
    "Draft",
    "DraftItem",
    "EvaluationResult",
    "JudgeVerdict",
    "LLMOutput",
    "PlainTextOutput",
    "StructuredOutput",
]
