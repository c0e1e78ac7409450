"""
Resolution of affirmative replies ("yes", "sure, add it", "ok").

A "yes" only means something in context. The context is searched by a fixed
chain of resolver strategies; the first one that yields items wins:

1. from_current_message         "yes add 2 fries" names the items itself
2. from_history                 bare "yes" after the user named items the bot
                                did not add yet ("3 burgers" -> "Add 3 burgers?")
3. from_previous_recommendation the last assistant reply recommended items, or
                                offered the whole menu
4. from_last_suggested          items recorded as suggested on the session

Every strategy is a pure function of (text, session, engine) and can be
tested on its own. If none yields items the cart is left alone and the user
gets a clarifying question.

Before the chain runs, a refusal ("ok no thanks") resolves to nothing, and a
bare "yes" to a checkout question, or while the conversation is already
confirming checkout, resolves to checkout instead of adding anything.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from .cart_engine import CartEngine, ResolvedItem
from .parsers.constants import (
    ADD_MORE_QUESTION_RE,
    ALL_ITEMS_PHRASES,
    ALL_ITEMS_RE,
    CART_CONFIRMATION_MARKERS,
    CHECKOUT_QUESTION_RE,
    RECOMMENDATION_CUES,
    RECOMMENDATION_PREFIXES,
)
from .parsers.deterministic import contains_phrase, is_bare_confirmation, is_command_only, is_decline
from .schemas import ContextType, DialogueState, MenuItem, SessionState

logger = logging.getLogger(__name__)

ResolverStrategy = Callable[[str, SessionState, CartEngine], Optional[List[ResolvedItem]]]


@dataclass
class AffirmativeResolution:
    action: str  # "add", "checkout", "decline" or "clarify"
    items: List[ResolvedItem] = field(default_factory=list)
    strategy: Optional[str] = None


# =============================================================================
# Strategies
# =============================================================================

def from_current_message(text: str, session: SessionState, engine: CartEngine) -> Optional[List[ResolvedItem]]:
    if is_bare_confirmation(text):
        return None
    return engine.extract(text, keyword_scan=True) or None


def from_history(text: str, session: SessionState, engine: CartEngine) -> Optional[List[ResolvedItem]]:
    if not is_bare_confirmation(text):
        return None
    for message in reversed(session.history):
        if message.role != "user" or message.applied:
            continue
        if is_bare_confirmation(message.content) or is_command_only(message.content):
            continue
        items = engine.extract(message.content, keyword_scan=True)
        if items:
            logger.debug("Affirmative resolved from earlier message %r", message.content)
            return items
    return None


def _offers_all_items(lowered: str) -> bool:
    return any(phrase in lowered for phrase in ALL_ITEMS_PHRASES) or ALL_ITEMS_RE.search(lowered) is not None


def _is_recommended(lowered: str, title: str) -> bool:
    if any(contains_phrase(lowered, f"{prefix} {title}") for prefix in RECOMMENDATION_PREFIXES):
        return True
    return contains_phrase(lowered, title) and any(cue in lowered for cue in RECOMMENDATION_CUES)


def recommended_in(text: str, engine: CartEngine, exclude: Sequence[str] = ()) -> List[MenuItem]:
    """Menu items the assistant reply `text` recommends, in menu order."""
    lowered = text.lower()
    return [
        item for item in engine.menu
        if item.item_id not in exclude and _is_recommended(lowered, item.title.lower())
    ]


def from_previous_recommendation(
    text: str, session: SessionState, engine: CartEngine
) -> Optional[List[ResolvedItem]]:
    previous = session.last_assistant_message()
    if not previous:
        return None
    lowered = previous.lower()

    if _offers_all_items(lowered):
        return [ResolvedItem(item=item, qty=1) for item in engine.menu] or None

    # A plain menu listing names every item; that is not a recommendation
    if session.last_context_type == ContextType.MENU_LISTING:
        return None

    in_cart = set()
    if any(marker in lowered for marker in CART_CONFIRMATION_MARKERS):
        in_cart = {line.item_id for line in session.cart}

    recommended = [ResolvedItem(item=item, qty=1) for item in recommended_in(previous, engine, tuple(in_cart))]
    return recommended or None


def from_last_suggested(text: str, session: SessionState, engine: CartEngine) -> Optional[List[ResolvedItem]]:
    if not is_bare_confirmation(text) or not session.last_suggested:
        return None
    return [ResolvedItem(item=item, qty=1) for item in engine.items_by_id(session.last_suggested)] or None


DEFAULT_CHAIN: Sequence[ResolverStrategy] = (
    from_current_message,
    from_history,
    from_previous_recommendation,
    from_last_suggested,
)


# =============================================================================
# Entry point
# =============================================================================

def wants_checkout(text: str, session: SessionState) -> bool:
    """A bare yes that answers a checkout question rather than an offer."""
    if not is_bare_confirmation(text) or not session.cart:
        return False
    if session.dialogue_state == DialogueState.CHECKOUT_CONFIRMATION:
        return True
    previous = session.last_assistant_message() or ""
    if not CHECKOUT_QUESTION_RE.search(previous):
        return False
    return ADD_MORE_QUESTION_RE.search(previous) is None


def resolve_affirmative(
    text: str,
    session: SessionState,
    engine: CartEngine,
    chain: Sequence[ResolverStrategy] = DEFAULT_CHAIN,
) -> AffirmativeResolution:
    if is_decline(text):
        return AffirmativeResolution(action="decline", strategy="decline")

    if wants_checkout(text, session):
        return AffirmativeResolution(action="checkout", strategy="checkout_question")

    for strategy in chain:
        items = strategy(text, session, engine)
        if items:
            logger.debug("Affirmative %r resolved by %s", text, strategy.__name__)
            return AffirmativeResolution(action="add", items=items, strategy=strategy.__name__)

    return AffirmativeResolution(action="clarify")
