"""
Conversation State Machine.

Tracks a coarse, advisory label for where the conversation is. The label
biases affirmative handling and the LLM prompt; it never enforces anything.
Cart truth and duplicate protection are guaranteed elsewhere whatever the
state says.

Transition rules, first match wins:
1. error intent                                   -> ERROR_RECOVERY
2. explicit checkout request                      -> CHECKOUT_CONFIRMATION
3. bot asked about checkout, user affirms         -> CHECKOUT_CONFIRMATION
4. bot asked to add more, user declines           -> CART_REVIEW
5. menu request                                   -> MENU_EXPLORATION
6. quantity/item words or an add intent           -> ITEM_SELECTION
7. question about the cart or total               -> CART_REVIEW
8. otherwise                                      -> unchanged

ORDER_CONFIRMED is set by the pipeline after a successful checkout, not here.
"""

import re
from typing import Optional

from .parsers.constants import (
    ADD_MORE_QUESTION_RE,
    BARE_CONFIRMATION_RE,
    CHECKOUT_QUESTION_RE,
    DECLINE_RE,
)
from .parsers.deterministic import has_quantity_phrase
from .schemas import DialogueState

_CHECKOUT_REQUEST_RE = re.compile(
    r"\bcheck ?out\b|\b(?:place|confirm|submit) (?:my |the )?order\b|^\s*(?:done|finish)\s*[!.]*$",
    re.IGNORECASE,
)
_MENU_REQUEST_RE = re.compile(r"\bmenu\b|\blist (?:the |your )?items\b|\bwhat (?:do you|can i) (?:have|get)\b", re.IGNORECASE)
_CART_QUESTION_RE = re.compile(r"\b(?:cart|basket|total|bill|my order|how much)\b", re.IGNORECASE)

_ADD_INTENTS = {"quantity_order", "add_to_cart", "affirmative", "add"}

STATE_CONTEXT = {
    DialogueState.GREETING: (
        "The customer just arrived. Welcome them briefly and offer to show the menu."
    ),
    DialogueState.MENU_EXPLORATION: (
        "The customer is browsing. Describe items and prices from the menu only."
    ),
    DialogueState.ITEM_SELECTION: (
        "The customer is choosing items. Confirm exactly what was added and ask if they want anything else."
    ),
    DialogueState.CART_REVIEW: (
        "The customer is reviewing the cart. Report the cart contents and total exactly as given."
    ),
    DialogueState.CHECKOUT_CONFIRMATION: (
        "The customer is confirming checkout. Do NOT add items already in the cart again. Use intent "
        "'confirm' with no order_items unless the customer asks for something new."
    ),
    DialogueState.ORDER_CONFIRMED: (
        "The last order was placed. A new request starts a new cart."
    ),
    DialogueState.ERROR_RECOVERY: (
        "The previous reply had problems. Keep this reply short, simple and strictly factual."
    ),
}


def next_state(
    current: DialogueState,
    user_text: str,
    last_assistant_text: Optional[str],
    cart_empty: bool,
    intent: Optional[str] = None,
) -> DialogueState:
    """Return the advisory state after `user_text`."""
    last_assistant_text = last_assistant_text or ""

    if intent == "error":
        return DialogueState.ERROR_RECOVERY

    if intent == "checkout" or _CHECKOUT_REQUEST_RE.search(user_text):
        return DialogueState.CHECKOUT_CONFIRMATION

    if (
        BARE_CONFIRMATION_RE.match(user_text)
        and CHECKOUT_QUESTION_RE.search(last_assistant_text)
        and not ADD_MORE_QUESTION_RE.search(last_assistant_text)
        and not cart_empty
    ):
        return DialogueState.CHECKOUT_CONFIRMATION

    if DECLINE_RE.match(user_text) and ADD_MORE_QUESTION_RE.search(last_assistant_text):
        return DialogueState.CART_REVIEW

    if intent == "show_menu" or _MENU_REQUEST_RE.search(user_text):
        return DialogueState.MENU_EXPLORATION

    if intent in _ADD_INTENTS or has_quantity_phrase(user_text):
        return DialogueState.ITEM_SELECTION

    if intent in ("cart_status", "cart_total") or _CART_QUESTION_RE.search(user_text):
        return DialogueState.CART_REVIEW

    return current


def context_for_state(state: DialogueState) -> str:
    return STATE_CONTEXT.get(state, "")
