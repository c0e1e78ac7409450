"""
Deterministic Parsing Functions (no LLM).

Regex/string-based extraction of item mentions and quantities from user text.
Mentions are raw phrases; turning a phrase into a menu item is the cart
engine's job.

Extraction order:
1. "<digits> <phrase>"        e.g. "2 burgers", "3x loaded fries"
2. "<number word> <phrase>"   e.g. "two burgers"
3. Full menu titles anywhere in the text, quantity 1
Spans claimed by an earlier rule are not re-read by a later one.
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from .constants import (
    BARE_CONFIRMATION_RE,
    COMMAND_ONLY_RE,
    DECLINE_REPLY_RE,
    KEYWORD_TYPOS,
    NUMBER_WORDS_PATTERN,
    PHRASE_FILLER_WORDS,
    PHRASE_STOP_WORDS,
    WORD_TO_NUM,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Compiled Regex Patterns (internal use)
# =============================================================================

# An item phrase ends at punctuation, a joining word, or the next quantity
_PHRASE_END = (
    r"(?=\s*(?:[,;&.!?]|$)"
    r"|\s+(?:" + "|".join(PHRASE_STOP_WORDS) + r")\b"
    r"|\s+(?:\d+|" + NUMBER_WORDS_PATTERN + r")\b)"
)

_PHRASE = r"([a-z][a-z0-9'\- ]*?)"

# "2 burgers", "2x burger", "12 loaded fries"
_NUMERIC_QTY_RE = re.compile(r"(?<![\w.])(\d{1,3})(?:x\s*|\s+)" + _PHRASE + _PHRASE_END)

# "two burgers"
_WORD_QTY_RE = re.compile(r"\b(" + NUMBER_WORDS_PATTERN + r")\s+" + _PHRASE + _PHRASE_END)

# Any quantity followed by a word; used to detect "has item info" without a menu
QUANTITY_PHRASE_RE = re.compile(
    r"(?:(?<![\w.])\d{1,3}(?:x\s*|\s+)|\b(?:" + NUMBER_WORDS_PATTERN + r")\s+)[a-z]",
    re.IGNORECASE,
)

# "remove the fries", "please delete 1 burger", "take off the wings"
_REMOVE_RE = re.compile(
    r"^\s*(?:please\s+)?(?:remove|delete|take out|take off|drop)\s+(.+?)\s*(?:from (?:my|the) (?:cart|order))?\s*[.!]*\s*$",
    re.IGNORECASE,
)

_TOKEN_RE = re.compile(r"[a-z0-9']+")


@dataclass
class ItemMention:
    """A raw item phrase pulled from text, with the quantity the user gave."""
    phrase: str
    qty: int = 1
    explicit_qty: bool = True


# =============================================================================
# Helpers
# =============================================================================

def normalize_tokens(text: str) -> List[str]:
    """Lower-case word tokens with common misspellings corrected."""
    return [KEYWORD_TYPOS.get(token, token) for token in _TOKEN_RE.findall(text.lower())]


def word_matches(a: str, b: str) -> bool:
    """True if two words are equal allowing a simple plural on either side."""
    if a == b:
        return True
    short, long_ = (a, b) if len(a) < len(b) else (b, a)
    if long_ in (short + "s", short + "es"):
        return True
    return short.endswith("y") and long_ == short[:-1] + "ies"


def contains_phrase(text: str, phrase: str) -> bool:
    """Whole-word containment of `phrase` in `text`, tolerating a trailing plural."""
    if not phrase:
        return False
    pattern = r"(?<![a-z0-9])" + re.escape(phrase) + r"(?:s|es)?(?![a-z0-9])"
    return re.search(pattern, text) is not None


def clean_phrase(phrase: str) -> str:
    tokens = phrase.strip(" '-").split()
    while tokens and tokens[0] in PHRASE_FILLER_WORDS:
        tokens.pop(0)
    return " ".join(tokens)


def _overlaps(span: Tuple[int, int], taken: List[Tuple[int, int]]) -> bool:
    start, end = span
    return any(start < t_end and t_start < end for t_start, t_end in taken)


# =============================================================================
# Extraction
# =============================================================================

def extract_item_mentions(text: str, titles: Iterable[str] = ()) -> List[ItemMention]:
    """
    Pull quantity/item phrases out of `text`, in the order they appear.

    Args:
        text: Raw user message
        titles: Menu item titles to look for when no quantity is given

    Returns:
        List of ItemMention; empty if nothing looks like an item.
    """
    lowered = text.lower()
    found: List[Tuple[int, ItemMention]] = []
    taken: List[Tuple[int, int]] = []

    for pattern, to_qty in ((_NUMERIC_QTY_RE, int), (_WORD_QTY_RE, WORD_TO_NUM.get)):
        for match in pattern.finditer(lowered):
            if _overlaps(match.span(), taken):
                continue
            qty = to_qty(match.group(1))
            phrase = clean_phrase(match.group(2))
            if not phrase or qty < 1:
                continue
            taken.append(match.span())
            found.append((match.start(), ItemMention(phrase=phrase, qty=qty)))

    for title in sorted({t.lower() for t in titles}, key=len, reverse=True):
        pattern = r"(?<![a-z0-9])" + re.escape(title) + r"(?:s|es)?(?![a-z0-9])"
        for match in re.finditer(pattern, lowered):
            if _overlaps(match.span(), taken):
                continue
            taken.append(match.span())
            found.append((match.start(), ItemMention(phrase=title, qty=1, explicit_qty=False)))

    mentions = [mention for _, mention in sorted(found, key=lambda f: f[0])]
    if mentions:
        logger.debug("Extracted mentions from %r: %s", text, mentions)
    return mentions


def has_quantity_phrase(text: str) -> bool:
    return QUANTITY_PHRASE_RE.search(text) is not None


def is_bare_confirmation(text: str) -> bool:
    return BARE_CONFIRMATION_RE.match(text) is not None


def is_command_only(text: str) -> bool:
    return COMMAND_ONLY_RE.match(text) is not None


def is_decline(text: str) -> bool:
    """True for a message like 'no' or 'ok no thanks' that turns an offer down."""
    return DECLINE_REPLY_RE.match(text) is not None


def parse_removal(text: str) -> List[Tuple[str, Optional[int]]]:
    """
    Parse a remove request into (phrase, qty) pairs.

    qty is None when the user named the item without a number, meaning the
    whole line goes.

        >>> parse_removal("remove 1 burger and the fries")
        [('burger', 1), ('fries', None)]
    """
    match = _REMOVE_RE.match(text)
    if not match:
        return []
    remainder = match.group(1).lower()

    targets: List[Tuple[str, Optional[int]]] = []
    for part in re.split(r"\s*(?:,|\band\b|&|\bplus\b)\s*", remainder):
        if not part:
            continue
        mentions = extract_item_mentions(part)
        if mentions:
            targets.extend((m.phrase, m.qty) for m in mentions)
        else:
            phrase = clean_phrase(re.sub(r"\b(?:a|an|my|all)\b", " ", part))
            if phrase:
                targets.append((phrase, None))
    return targets
