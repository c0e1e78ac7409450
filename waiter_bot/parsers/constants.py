"""
Constants and word lists for deterministic parsing.

Everything here is data: word tables, phrase lists and compiled patterns that
the parsers and resolver strategies share.
"""

import re

# =============================================================================
# Quantities
# =============================================================================

WORD_TO_NUM = {
    "one": 1,
    "two": 2,
    "three": 3,
    "four": 4,
    "five": 5,
    "six": 6,
    "seven": 7,
    "eight": 8,
    "nine": 9,
    "ten": 10,
}

NUMBER_WORDS_PATTERN = "|".join(WORD_TO_NUM)


# =============================================================================
# Item phrase cleanup
# =============================================================================

# Leading words dropped from a captured item phrase ("2 more of the burgers")
PHRASE_FILLER_WORDS = {
    "x", "more", "of", "the", "extra", "additional",
    "order", "orders", "plate", "plates", "piece", "pieces",
    "portion", "portions", "serving", "servings",
}

# Words that end an item phrase
PHRASE_STOP_WORDS = ("and", "plus", "with", "please", "pls", "also", "then", "for")

# Frequent misspellings, applied token by token before keyword lookup
KEYWORD_TYPOS = {
    "fires": "fries",
    "fire": "fries",
    "frys": "fries",
    "burgur": "burger",
    "burgor": "burger",
    "chiken": "chicken",
    "chikken": "chicken",
    "piza": "pizza",
    "pizzza": "pizza",
}

# Title words too generic to identify an item on their own
TITLE_STOP_WORDS = {
    "a", "an", "the", "and", "or", "of", "with", "in", "on", "our",
    "special", "classic", "house", "style", "regular", "large", "small",
}


# =============================================================================
# Confirmations and commands
# =============================================================================

AFFIRMATIVE_WORDS = ("yes", "sure", "ok", "okay", "yup", "yeah", "yep")

# "yes", "ok!", "sure." with nothing else
BARE_CONFIRMATION_RE = re.compile(
    r"^\s*(?:" + "|".join(AFFIRMATIVE_WORDS) + r")\s*[!.]*\s*$",
    re.IGNORECASE,
)

# Messages that carry no item information on their own
COMMAND_ONLY_RE = re.compile(
    r"^\s*(?:" + "|".join(AFFIRMATIVE_WORDS)
    + r"|add|total|cost|price|how much|final total|confirm|checkout|done|finish)\s*[!.?]*\s*$",
    re.IGNORECASE,
)

DECLINE_RE = re.compile(
    r"^\s*(?:no|nope|nah|no thanks|no thank you|that'?s (?:all|it)|nothing(?: else)?)\b",
    re.IGNORECASE,
)

# A whole message that turns an offer down: "no", "ok no thanks", "nah, I'm good"
DECLINE_REPLY_PATTERN = (
    r"^\s*(?:(?:" + "|".join(AFFIRMATIVE_WORDS) + r")\s*[,.!]?\s+)?"
    r"(?:no|nope|nah|not (?:now|today|really)|i'?m good|i'?ll pass)"
    r"(?:\s*[,.!]?\s*(?:thanks|thank you|i'?m good))?\s*[!.]*\s*$"
)
DECLINE_REPLY_RE = re.compile(DECLINE_REPLY_PATTERN, re.IGNORECASE)

# Asking what something would cost, not ordering it: "how much are 2 burgers"
PRICE_QUESTION_RE = re.compile(
    r"^\s*(?:how much|what (?:does|do|will|would)|what'?s the (?:price|cost))\b",
    re.IGNORECASE,
)


# =============================================================================
# Assistant reply markers
# =============================================================================

# Offers of the whole menu: "want all items?", "everything on the menu"
ALL_ITEMS_PHRASES = ("all items", "all the items", "everything on the menu", "the whole menu")

ALL_ITEMS_RE = re.compile(
    r"\b(?:all|every) (?:of )?(?:the |our )?(?:menu )?items\b|\beverything on (?:the|our) menu\b"
)

# "<prefix> <item title>" in an assistant reply reads as a recommendation
RECOMMENDATION_PREFIXES = ("add", "try", "with", "some", "the")

# Any of these anywhere in the reply makes a mentioned item a recommendation
RECOMMENDATION_CUES = (
    "recommend",
    "would you like",
    "want to",
    "perfect side",
    "how about",
    "suggest",
    "goes great with",
)

# Replies that confirmed an add or summarized the cart. Items the user named
# before one of these have already been applied.
CART_CONFIRMATION_MARKERS = (
    "i've added",
    "i have added",
    "added to your",
    "your cart now has",
    "your current order:",
    "total:",
    "total comes to",
    "your total is",
)

# Replies that asked the user to confirm checkout
CHECKOUT_QUESTION_RE = re.compile(
    r"\b(?:check ?out|place (?:your|the) order|confirm (?:your|the) order|proceed with (?:your|the) order)\b",
    re.IGNORECASE,
)

# Replies that asked whether the user wants more
ADD_MORE_QUESTION_RE = re.compile(
    r"\b(?:anything else|something else|add (?:anything|something|more)|like to add)\b",
    re.IGNORECASE,
)
