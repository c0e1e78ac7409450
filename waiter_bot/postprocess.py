"""
Post-processing policies for drafted replies.

Every reply from the model-assisted path runs through DEFAULT_POLICIES, in
order, after evaluation. Each policy is a plain function
`(draft, context) -> draft` that returns the draft unchanged when it has
nothing to fix, so each one can be unit tested in isolation.

The last policy, enforce_cart_truth, is the hard guarantee: whatever the model
or evaluator produced, a non-empty cart is never reported as empty.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from .errors import DataIntegrityViolation
from .replies import SAFE_FALLBACK_REPLY, cart_truth_reply, checkout_question_reply
from .schemas import CartLine, DialogueState, Draft, DraftItem

logger = logging.getLogger(__name__)


# =============================================================================
# Patterns
# =============================================================================

# A JSON object dangling at the end of the reply
JSON_TAIL_RE = re.compile(r"\s*\{[\s\S]*\}\s*$")

# Whole lines of evaluator chatter
_EVALUATION_LINE_PATTERNS = [
    re.compile(r"^.*an improved response could be[:'].*$", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^.*\bthis (?:acknowledges|addresses|handles|fixes|resolves)\b.*$", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^\s*this response (?:fails|passes)\b.*$", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^\s*(?:PASS|FEEDBACK|SUGGESTION)\b.*$", re.MULTILINE),
]

# Evaluator language that must never reach a customer
EVALUATION_LEAK_RE = re.compile(
    r"improved response|\bevaluation\b|\bPASS\s*[:=]|\bFEEDBACK\s*[:=]|\bSUGGESTION\s*[:=]|\bthis response\b",
    re.IGNORECASE,
)

CART_EMPTY_CLAIM_RE = re.compile(
    r"\bcart is (?:currently |still )?empty\b"
    r"|\b(?:your )?(?:order|basket) is (?:currently |still )?empty\b"
    r"|\bnothing in your (?:cart|order|basket)\b"
    r"|\byou haven'?t (?:added|ordered) anything\b",
    re.IGNORECASE,
)

# Only a real checkout may tell the customer their order went through
ORDER_PLACED_CLAIM_RE = re.compile(
    r"\b(?:your |the )?order (?:has been|was|is being|is) (?:placed|submitted|sent|confirmed)\b"
    r"|\b(?:i'?ve|i have|we'?ve|we have) (?:placed|submitted|sent) your order\b"
    r"|\b(?:sent|passed) (?:it |your order )?(?:on )?to the kitchen\b"
    r"|\border (?:number|#|id)\b",
    re.IGNORECASE,
)


@dataclass
class PostProcessContext:
    """What the policies may consult. The cart is the post-reconciliation cart."""
    cart: List[CartLine] = field(default_factory=list)
    dialogue_state: DialogueState = DialogueState.GREETING
    user_text: str = ""


Policy = Callable[[Draft, PostProcessContext], Draft]


def claims_empty_cart(text: str) -> bool:
    return "cart is empty" in text.lower() or CART_EMPTY_CLAIM_RE.search(text) is not None


# =============================================================================
# Policies
# =============================================================================

def strip_json_tail(draft: Draft, ctx: PostProcessContext) -> Draft:
    cleaned = JSON_TAIL_RE.sub("", draft.reply_text).strip()
    if cleaned == draft.reply_text:
        return draft
    return draft.model_copy(update={"reply_text": cleaned})


def strip_evaluation_lines(draft: Draft, ctx: PostProcessContext) -> Draft:
    cleaned = draft.reply_text
    for pattern in _EVALUATION_LINE_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned).strip()
    if cleaned == draft.reply_text:
        return draft
    return draft.model_copy(update={"reply_text": cleaned})


def replace_leaked_evaluation(draft: Draft, ctx: PostProcessContext) -> Draft:
    """Swap in a generic reply if evaluator language survived, or nothing is left."""
    if draft.reply_text.strip() and not EVALUATION_LEAK_RE.search(draft.reply_text):
        return draft
    logger.warning("Reply carried evaluation text or was empty; using fallback reply")
    return draft.model_copy(update={"reply_text": SAFE_FALLBACK_REPLY})


def _names_cart_line(item: DraftItem, cart: List[CartLine]) -> bool:
    name = item.name.strip().lower()
    return any(
        name in (line.title.lower(), line.item_id.lower()) or name.rstrip("s") == line.title.lower().rstrip("s")
        for line in cart
    )


def guard_checkout_duplicates(draft: Draft, ctx: PostProcessContext) -> Draft:
    """
    While confirming checkout, drop proposed items the cart already holds.

    New items stay and are added for real. If nothing new is left the draft
    becomes a checkout question; it never places the order itself.
    """
    if ctx.dialogue_state != DialogueState.CHECKOUT_CONFIRMATION or draft.intent != "add_to_cart":
        return draft

    new_items = [item for item in draft.order_items if not _names_cart_line(item, ctx.cart)]
    if new_items and len(new_items) == len(draft.order_items):
        return draft
    logger.warning(
        "Corrected reply: %s",
        DataIntegrityViolation("add_to_cart drafted during checkout confirmation re-adds cart items"),
    )
    if new_items:
        return draft.model_copy(update={"order_items": new_items})
    return draft.model_copy(update={
        "intent": "confirm",
        "order_items": [],
        "reply_text": checkout_question_reply(ctx.cart),
    })


def reject_unplaced_order_claims(draft: Draft, ctx: PostProcessContext) -> Draft:
    """Drafts never place orders, so a reply saying one was placed is replaced."""
    if not ORDER_PLACED_CLAIM_RE.search(draft.reply_text):
        return draft
    logger.warning(
        "Corrected reply: %s",
        DataIntegrityViolation("reply claimed an order that was not placed"),
    )
    return draft.model_copy(update={"reply_text": checkout_question_reply(ctx.cart)})


def enforce_cart_truth(draft: Draft, ctx: PostProcessContext) -> Draft:
    if not ctx.cart or not claims_empty_cart(draft.reply_text):
        return draft
    logger.warning(
        "Corrected reply: %s",
        DataIntegrityViolation(f"reply claimed an empty cart holding {len(ctx.cart)} lines"),
    )
    return draft.model_copy(update={"reply_text": cart_truth_reply(ctx.cart)})


DEFAULT_POLICIES: Sequence[Policy] = (
    strip_json_tail,
    strip_evaluation_lines,
    replace_leaked_evaluation,
    guard_checkout_duplicates,
    reject_unplaced_order_claims,
    enforce_cart_truth,
)


def apply_policies(
    draft: Draft,
    ctx: PostProcessContext,
    policies: Optional[Sequence[Policy]] = None,
) -> Draft:
    for policy in policies or DEFAULT_POLICIES:
        draft = policy(draft, ctx)
    return draft
