"""
Intent Router.

Decides whether a message can be answered on the deterministic fast path or
needs the model-assisted path. Purely regex based: no network calls, no
randomness, same input always gives the same decision.

Routes:
- ignore:          empty or whitespace-only text
- fast:            first matching entry in FAST_PATTERNS (order matters)
- model_assisted:  everything else
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Pattern, Tuple

from .parsers.constants import AFFIRMATIVE_WORDS, DECLINE_REPLY_PATTERN, NUMBER_WORDS_PATTERN
from .schemas import TenantConfig

logger = logging.getLogger(__name__)


class Route(str, Enum):
    FAST = "fast"
    MODEL_ASSISTED = "model_assisted"
    IGNORE = "ignore"


@dataclass(frozen=True)
class RouteDecision:
    route: Route
    intent: Optional[str] = None
    reason: str = ""


def _compile(*patterns: str) -> List[Pattern]:
    return [re.compile(p) for p in patterns]


# Ordered (intent, patterns) table, matched against trimmed lower-case text.
# Earlier entries win: "what's my total" must hit cart_total before cart_status,
# "yes show me the menu" must hit show_menu before affirmative, "ok no thanks"
# must hit decline before affirmative.
FAST_PATTERNS: List[Tuple[str, List[Pattern]]] = [
    ("greeting", _compile(
        r"^(?:hi+|hello|hey|hiya|howdy|good (?:morning|afternoon|evening))(?: there)?[\s!.]*$",
    )),
    ("clear_cart", _compile(
        r"\b(?:clear|empty|reset) (?:my |the )?(?:cart|order|basket)\b",
        r"\bcancel (?:my |the )?(?:whole )?order\b",
        r"\bstart over\b",
    )),
    ("cart_total", _compile(
        r"\b(?:total|bill)\b",
        r"\bhow much (?:do i owe|is (?:it|that|my order|everything)|will (?:it|that) be)\b",
        r"\bwhat (?:does|will) (?:it|that|my order|everything) cost\b",
    )),
    ("checkout", _compile(
        r"\bcheck ?out\b",
        r"\b(?:place|confirm|submit|finalize) (?:my |the )?order\b",
        r"^(?:done|finish|finished|confirm|that'?s all|that'?s it)[\s!.]*$",
    )),
    ("remove_item", _compile(
        r"^(?:please\s+)?(?:remove|delete|take out|take off|drop)\s+\S",
    )),
    ("quantity_order", _compile(
        r"(?<![\w.])\d{1,3}(?:x\s*|\s+)[a-z]",
        r"\b(?:" + NUMBER_WORDS_PATTERN + r")\s+[a-z]",
    )),
    ("show_menu", _compile(
        r"\bmenu\b",
        r"\blist (?:the |your )?items\b",
        r"\bwhat (?:do you|can i) (?:have|get|order)\b",
    )),
    ("cart_status", _compile(
        r"\b(?:cart|basket)\b",
        r"\bmy order\b",
    )),
    ("help", _compile(
        r"\b(?:help|support)\b",
        r"\bhow (?:does|do) (?:this|it|i) (?:work|order)\b",
    )),
    ("decline", _compile(
        DECLINE_REPLY_PATTERN,
    )),
    ("affirmative", _compile(
        r"^(?:" + "|".join(AFFIRMATIVE_WORDS) + r"|please do|add)\b",
    )),
]

FAST_INTENTS = tuple(intent for intent, _ in FAST_PATTERNS)


def fast_path_intent(text: str, disabled: Tuple[str, ...] = ()) -> Optional[str]:
    for intent, patterns in FAST_PATTERNS:
        if intent in disabled:
            continue
        if any(p.search(text) for p in patterns):
            return intent
    return None


def classify(text: Optional[str], tenant_config: Optional[TenantConfig] = None) -> RouteDecision:
    """
    Classify a user message.

    Args:
        text: Raw user text
        tenant_config: Optional per-tenant settings (disabled fast intents)

    Returns:
        RouteDecision with route, intent (fast route only) and reason
    """
    normalized = (text or "").strip().lower()
    if not normalized:
        return RouteDecision(route=Route.IGNORE, reason="empty")

    disabled = tuple(tenant_config.disabled_fast_intents) if tenant_config else ()
    intent = fast_path_intent(normalized, disabled)
    if intent:
        logger.debug("Fast path %s for %r", intent, normalized)
        return RouteDecision(route=Route.FAST, intent=intent, reason="fast-pattern-match")

    return RouteDecision(route=Route.MODEL_ASSISTED, reason="no-fast-pattern")
