"""
Cart Engine
===========

Deterministic cart handling against one tenant's menu snapshot:

1. **Extraction**: quantity/item phrases from user text (see parsers.deterministic)
2. **Resolution**: phrase -> menu item, tried in this order
   a. full title contained in the phrase ("2 truffle melt burgers")
   b. alias or title keyword ("burger", "bbq", typo "fires" -> "fries")
   c. category tag, only when exactly one item carries it ("sides")
   Phrases that resolve to nothing are dropped.
3. **Mutation**: merge into an existing line by item_id or append a new line.
   The unit price is copied from the menu when the line is created and is
   never rewritten afterwards.
4. **Checkout**: freeze the cart into an OrderProjection and submit it through
   an OrderSink. Callers clear the cart only when the sink returns an id.

Mutation helpers work on a plain list of CartLine so they can be replayed on
the latest stored cart inside SessionStore.save.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set

from .errors import TransientUpstreamError
from .parsers.constants import TITLE_STOP_WORDS
from .parsers.deterministic import (
    contains_phrase,
    extract_item_mentions,
    normalize_tokens,
    word_matches,
)
from .schemas import CartLine, DraftItem, MenuItem, OrderLine, OrderProjection
from .services.order import OrderSink

logger = logging.getLogger(__name__)


@dataclass
class ResolvedItem:
    """A menu item and how many the user asked for."""
    item: MenuItem
    qty: int = 1


@dataclass
class CheckoutResult:
    status: str  # "submitted", "empty" or "failed"
    total: float = 0.0
    order_id: Optional[str] = None
    projection: Optional[OrderProjection] = None

    @property
    def submitted(self) -> bool:
        return self.status == "submitted"


# =============================================================================
# Menu Index
# =============================================================================

class MenuIndex:
    """Lookup tables built once per request from the menu snapshot."""

    def __init__(self, menu: Iterable[MenuItem]):
        self.items: List[MenuItem] = list(menu)
        self.by_id: Dict[str, MenuItem] = {item.item_id: item for item in self.items}

        # Longest first so "truffle melt burger" beats "burger"
        self._titles = sorted(
            ((item.title.lower(), item) for item in self.items),
            key=lambda pair: len(pair[0]),
            reverse=True,
        )

        aliases: Dict[str, MenuItem] = {}
        for item in self.items:
            for alias in item.aliases:
                aliases.setdefault(alias.lower().strip(), item)
        self._aliases = sorted(aliases.items(), key=lambda pair: len(pair[0]), reverse=True)

        # Title words that belong to exactly one item work as keywords
        owners: Dict[str, Set[str]] = {}
        for item in self.items:
            for word in re.findall(r"[a-z0-9]+", item.title.lower()):
                if len(word) < 3 or word in TITLE_STOP_WORDS:
                    continue
                owners.setdefault(word, set()).add(item.item_id)
        self._keywords: Dict[str, MenuItem] = {
            word: self.by_id[next(iter(ids))] for word, ids in owners.items() if len(ids) == 1
        }

        self._tags: Dict[str, List[MenuItem]] = {}
        for item in self.items:
            for tag in item.tags:
                self._tags.setdefault(tag.lower().strip(), []).append(item)

    def by_title(self, phrase: str) -> Optional[MenuItem]:
        for title, item in self._titles:
            if contains_phrase(phrase, title):
                return item
        return None

    def by_alias(self, phrase: str) -> Optional[MenuItem]:
        for alias, item in self._aliases:
            if contains_phrase(phrase, alias):
                return item
        tokens = phrase.split()
        for alias, item in self._aliases:
            if " " not in alias and any(word_matches(token, alias) for token in tokens):
                return item
        for token in tokens:
            for keyword, item in self._keywords.items():
                if word_matches(token, keyword):
                    return item
        return None

    def by_category(self, phrase: str) -> Optional[MenuItem]:
        tokens = phrase.split()
        for tag, items in self._tags.items():
            matched = contains_phrase(phrase, tag) or (
                " " not in tag and any(word_matches(token, tag) for token in tokens)
            )
            if not matched:
                continue
            if len(items) == 1:
                return items[0]
            logger.debug("Category %r matches %d items, not guessing", tag, len(items))
        return None

    def mentioned_in(self, text: str) -> List[MenuItem]:
        """Menu items whose full title appears in `text`, in menu order."""
        lowered = text.lower()
        return [item for item in self.items if contains_phrase(lowered, item.title.lower())]


# =============================================================================
# Cart Engine
# =============================================================================

class CartEngine:
    """
    Resolves user text to menu items for one tenant's menu.

    Usage:
        engine = CartEngine(menu)
        for resolved in engine.extract("2 burgers and 1 fries"):
            add_resolved(cart, resolved)
    """

    def __init__(self, menu: Iterable[MenuItem]):
        self.index = MenuIndex(menu)

    @property
    def menu(self) -> List[MenuItem]:
        return self.index.items

    def resolve(self, phrase: str) -> Optional[MenuItem]:
        """Map a raw phrase to a menu item, or None."""
        normalized = " ".join(normalize_tokens(phrase))
        if not normalized:
            return None
        item = (
            self.index.by_title(normalized)
            or self.index.by_alias(normalized)
            or self.index.by_category(normalized)
        )
        if item is None:
            logger.debug("Dropping unresolved item phrase %r", phrase)
        return item

    def extract(self, text: str, keyword_scan: bool = False) -> List[ResolvedItem]:
        """
        Extract and resolve every item mention in `text`.

        With keyword_scan, a message that has no quantity or full title is
        searched word by word for aliases and keywords ("yes add fries").
        """
        resolved: List[ResolvedItem] = []
        for mention in extract_item_mentions(text, (item.title for item in self.menu)):
            item = self.resolve(mention.phrase)
            if item is not None:
                resolved.append(ResolvedItem(item=item, qty=mention.qty))

        if not resolved and keyword_scan:
            seen: Set[str] = set()
            for token in normalize_tokens(text):
                item = self.index.by_alias(token) or self.index.by_category(token)
                if item is not None and item.item_id not in seen:
                    seen.add(item.item_id)
                    resolved.append(ResolvedItem(item=item, qty=1))

        return resolved

    def resolve_draft_items(self, draft_items: Iterable[DraftItem]) -> List[ResolvedItem]:
        """Resolve items an LLM draft proposed. Anything not on the menu is dropped."""
        resolved = []
        for draft_item in draft_items:
            item = self.resolve(draft_item.name)
            if item is None:
                logger.info("LLM proposed %r which is not on the menu; ignoring", draft_item.name)
                continue
            resolved.append(ResolvedItem(item=item, qty=max(1, draft_item.quantity)))
        return resolved

    def items_by_id(self, item_ids: Iterable[str]) -> List[MenuItem]:
        return [self.index.by_id[i] for i in item_ids if i in self.index.by_id]

    def mentioned_items(self, text: str) -> List[MenuItem]:
        return self.index.mentioned_in(text)


# =============================================================================
# Cart Mutation
# =============================================================================

def add_to_cart(cart: List[CartLine], item_id: str, title: str, qty: int, unit_price: float) -> CartLine:
    """Increment the line for item_id, or append a new one at unit_price."""
    for line in cart:
        if line.item_id == item_id:
            line.qty += qty
            return line
    line = CartLine(item_id=item_id, title=title, qty=qty, unit_price=unit_price)
    cart.append(line)
    return line


def add_resolved(cart: List[CartLine], resolved: ResolvedItem) -> CartLine:
    return add_to_cart(cart, resolved.item.item_id, resolved.item.title, resolved.qty, resolved.item.price)


def remove_from_cart(cart: List[CartLine], item_id: str, qty: Optional[int] = None) -> int:
    """
    Remove `qty` units of item_id (the whole line when qty is None).

    Returns:
        int: Units actually removed (0 if the item is not in the cart)
    """
    for index, line in enumerate(cart):
        if line.item_id != item_id:
            continue
        if qty is None or qty >= line.qty:
            del cart[index]
            return line.qty
        line.qty -= qty
        return qty
    return 0


def settle_cart(cart: List[CartLine], ordered: Iterable[CartLine]) -> None:
    """Take checked-out lines off the cart, leaving anything added since."""
    for line in ordered:
        remove_from_cart(cart, line.item_id, line.qty)


def cart_total(cart: Iterable[CartLine]) -> float:
    return round(sum(line.subtotal for line in cart), 2)


# =============================================================================
# Checkout
# =============================================================================

def build_order_projection(tenant_id: str, user_id: str, cart: Iterable[CartLine]) -> OrderProjection:
    lines = [
        OrderLine(
            item_id=line.item_id,
            title=line.title,
            qty=line.qty,
            unit_price=line.unit_price,
            subtotal=round(line.subtotal, 2),
        )
        for line in cart
    ]
    return OrderProjection(
        tenant_id=tenant_id,
        user_id=user_id,
        lines=lines,
        total=round(sum(line.subtotal for line in lines), 2),
    )


def checkout(tenant_id: str, user_id: str, cart: List[CartLine], sink: OrderSink) -> CheckoutResult:
    """
    Submit the cart as an order. Does not touch the cart.

    An empty cart is rejected without calling the sink. A sink failure comes
    back as status "failed" so the caller keeps the cart.
    """
    if not cart:
        logger.info("Checkout rejected for %s/%s: cart is empty", tenant_id, user_id)
        return CheckoutResult(status="empty")

    projection = build_order_projection(tenant_id, user_id, cart)
    try:
        order_id = sink.submit(projection)
    except TransientUpstreamError as e:
        logger.warning("Order submission failed for %s/%s: %s", tenant_id, user_id, e)
        return CheckoutResult(status="failed", total=projection.total, projection=projection)

    return CheckoutResult(status="submitted", total=projection.total, order_id=order_id, projection=projection)
