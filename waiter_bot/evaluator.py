"""
Response Evaluator.

Quality gate for drafted replies. A draft is checked against a fixed rubric:

1. MENU ACCURACY      only items that exist on the menu
2. CATEGORY ACCURACY  no categories the menu does not have (drinks, desserts...)
3. RELEVANCE          answers what the customer actually asked
4. CART TRUTH         never misreports cart contents or total (critical)
5. FORMAT             plain text, no JSON or evaluator artifacts
6. CHECKOUT vs ADD    confirming checkout never re-adds what is in the cart
7. DUPLICATES         the same item is not proposed twice

Rules 1, 2, 4, 5, 6 and 7 are checked deterministically first. Only a draft
that passes them is sent to the LLM judge (instructor + pydantic response
model), which covers relevance and anything the regexes miss. If the judge
itself is unavailable the draft passes; the deterministic guarantees still
hold through post-processing.

EvaluationLog keeps the last results in memory, counts recurring failure
categories, and turns the most common ones into standing prompt guidance.
"""

import json
import logging
import os
import re
import threading
from collections import Counter, deque
from typing import Any, Deque, Dict, List, Optional

import instructor
from instructor.core import InstructorRetryException
from openai import OpenAI, OpenAIError
from pydantic import ValidationError

from .cart_engine import CartEngine, cart_total
from .config import EVALUATION_MODEL, LLM_TIMEOUT_SECONDS
from .postprocess import EVALUATION_LEAK_RE, claims_empty_cart
from .replies import describe_cart, format_price
from .schemas import DialogueState, Draft, EvaluationResult, JudgeVerdict, MenuItem, SessionState

logger = logging.getLogger(__name__)

# Categories restaurants commonly have; mentioning one the menu lacks is an error
CATEGORY_WORDS = (
    "drink", "beverage", "soda", "juice", "coffee", "tea",
    "dessert", "ice cream", "wine", "beer", "cocktail", "salad", "pizza",
)

_NEGATION_RE = r"\b(?:no|not|don'?t|do not|doesn'?t|without|sorry)\b[^.?!]{0,30}"

_JSON_ARTIFACT_RE = re.compile(r"```|\{\s*\"|\"?\b(?:reply_text|order_items)\b\"?\s*:", re.IGNORECASE)

_STATED_TOTAL_RE = re.compile(
    r"\btotal\b[^.\d\n]{0,30}?(?:rs\.?|inr|₹|\$)\s*([\d,]+(?:\.\d+)?)",
    re.IGNORECASE,
)

_CHECKOUT_REQUEST_RE = re.compile(r"\bcheck ?out\b|\b(?:place|confirm) (?:my |the )?order\b", re.IGNORECASE)

JUDGE_SYSTEM_PROMPT = """You are a strict quality evaluator for restaurant ordering assistant replies.
Evaluate whether the reply meets ALL criteria:

1. MENU ACCURACY: must not mention or suggest any item that is not on the menu
2. CATEGORY ACCURACY: must not suggest categories (like drinks) that do not exist on the menu
3. RELEVANCE: must address what the customer asked
4. CART AWARENESS: must describe the cart exactly as given; a non-empty cart is never "empty"
5. CLARITY: clear about items, quantities and prices
6. FORMAT: plain text only, no JSON artifacts or evaluation text
7. CONSISTENCY: when the customer is confirming checkout, items already in the cart may not be added again

If the reply fails, give short feedback naming the broken rule(s) and a fully
corrected reply for the customer in `suggestion`. The suggestion must follow
every rule and must not mention this evaluation."""


def get_instructor_client():
    """Get instructor-wrapped OpenAI client."""
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        raise ValueError("OPENAI_API_KEY not set")
    return instructor.from_openai(OpenAI(api_key=api_key, timeout=LLM_TIMEOUT_SECONDS, max_retries=0))


# =============================================================================
# Evaluation Log
# =============================================================================

class EvaluationLog:
    """In-memory record of recent evaluations and their failure categories."""

    def __init__(self, max_entries: int = 100):
        self._entries: Deque[EvaluationResult] = deque(maxlen=max_entries)
        self._errors: Counter = Counter()
        self._lock = threading.Lock()

    @staticmethod
    def categorize(feedback: str) -> str:
        lowered = feedback.lower()
        if "menu" in lowered or "categor" in lowered:
            return "MENU_ERROR"
        if "cart" in lowered or "total" in lowered:
            return "CART_AWARENESS"
        if "format" in lowered or "json" in lowered:
            return "FORMAT_ERROR"
        if "relevan" in lowered:
            return "RELEVANCE"
        return "OTHER"

    def record(self, result: EvaluationResult) -> None:
        with self._lock:
            self._entries.append(result)
            if not result.passed:
                self._errors[self.categorize(result.feedback)] += 1

    def common_errors(self, limit: int = 3) -> List[str]:
        with self._lock:
            return [category for category, _ in self._errors.most_common(limit)]

    def improvement_hint(self) -> Optional[str]:
        top = self.common_errors()
        if not top:
            return None
        return (
            f"SELF-IMPROVEMENT FOCUS: recent replies have had these problems: {', '.join(top)}. "
            "Pay special attention to avoiding them."
        )

    def insights(self) -> Dict[str, Any]:
        with self._lock:
            total = len(self._entries)
            passed = sum(1 for e in self._entries if e.passed)
            errors_total = sum(self._errors.values())
            return {
                "total_evaluations": total,
                "pass_rate": passed / max(1, total),
                "common_errors": dict(self._errors),
                "error_distribution": [
                    {"type": category, "count": count, "percentage": round(100 * count / max(1, errors_total))}
                    for category, count in self._errors.most_common()
                ],
            }


# =============================================================================
# Evaluator
# =============================================================================

class Evaluator:
    """
    Scores a draft against the rubric.

    Usage:
        evaluator = Evaluator()
        result = evaluator.check(draft, session, menu, user_text="what's my total")
        if not result.passed:
            retry_with(result.feedback)
    """

    def __init__(
        self,
        judge_client=None,
        model: str = EVALUATION_MODEL,
        use_llm_judge: bool = True,
        log: Optional[EvaluationLog] = None,
    ):
        self._judge_client = judge_client
        self.model = model
        self.use_llm_judge = use_llm_judge
        self.log = log or EvaluationLog()

    # -------------------------------------------------------------------------
    # Deterministic rubric
    # -------------------------------------------------------------------------

    def rubric_violations(
        self,
        draft: Draft,
        session: SessionState,
        menu: List[MenuItem],
        user_text: str = "",
        dialogue_state: Optional[DialogueState] = None,
    ) -> List[str]:
        engine = CartEngine(menu)
        text = draft.reply_text
        lowered = text.lower()
        violations: List[str] = []

        # Menu accuracy and duplicates in proposed items
        resolved_ids: List[str] = []
        for item in draft.order_items:
            menu_item = engine.resolve(item.name)
            if menu_item is None:
                violations.append(f"MENU: '{item.name}' is not on the menu.")
            elif menu_item.item_id in resolved_ids:
                violations.append(f"DUPLICATE: '{menu_item.title}' is listed more than once in order_items.")
            else:
                resolved_ids.append(menu_item.item_id)

        # Category accuracy
        menu_words = " ".join(
            [i.title.lower() for i in menu] + [t.lower() for i in menu for t in i.tags]
            + [a.lower() for i in menu for a in i.aliases]
        )
        for word in CATEGORY_WORDS:
            if word in menu_words:
                continue
            mention = re.search(r"\b" + re.escape(word) + r"(?:s|es)?\b", lowered)
            if not mention:
                continue
            if re.search(_NEGATION_RE + re.escape(word), lowered):
                continue
            violations.append(f"MENU: mentions '{word}' but the menu has no such category.")

        # Cart truthfulness; totals are only checked when nothing is being added
        if (session.cart or draft.order_items) and claims_empty_cart(text):
            held = describe_cart(session.cart) if session.cart else "the items being added"
            violations.append(f"CART: reply says the cart is empty but it holds {held}.")
        if draft.intent != "add_to_cart":
            expected_total = cart_total(session.cart)
            for match in _STATED_TOTAL_RE.finditer(text):
                try:
                    stated = float(match.group(1).replace(",", ""))
                except ValueError:
                    continue
                if abs(stated - expected_total) > 0.01:
                    violations.append(
                        f"CART: reply states a total of {stated:g} but the cart total is {format_price(expected_total)}."
                    )
                    break

        # Format
        if _JSON_ARTIFACT_RE.search(text):
            violations.append("FORMAT: reply_text contains JSON or code artifacts.")
        if EVALUATION_LEAK_RE.search(text):
            violations.append("FORMAT: reply_text contains evaluation text.")

        # Checkout vs add
        confirming = dialogue_state == DialogueState.CHECKOUT_CONFIRMATION or _CHECKOUT_REQUEST_RE.search(user_text)
        if confirming and draft.intent == "add_to_cart":
            re_added = [line.title for line in session.cart if line.item_id in resolved_ids]
            if re_added:
                violations.append(
                    f"CHECKOUT: customer is checking out but the reply adds {', '.join(re_added)} again."
                )

        return violations

    # -------------------------------------------------------------------------
    # LLM judge
    # -------------------------------------------------------------------------

    @property
    def judge_client(self):
        if self._judge_client is None:
            self._judge_client = get_instructor_client()
        return self._judge_client

    def _judge(
        self,
        draft: Draft,
        session: SessionState,
        menu: List[MenuItem],
        user_text: str,
    ) -> JudgeVerdict:
        context = {
            "menu": [{"title": i.title, "price": i.price, "categories": i.tags} for i in menu],
            "cart": [{"title": l.title, "qty": l.qty, "unit_price": l.unit_price} for l in session.cart],
            "cart_total": cart_total(session.cart),
            "recent_history": [m.model_dump(include={"role", "content"}) for m in session.history[-4:]],
            "customer_message": user_text,
            "reply": {"reply_text": draft.reply_text, "intent": draft.intent,
                      "order_items": [i.model_dump() for i in draft.order_items]},
        }
        return self.judge_client.chat.completions.create(
            model=self.model,
            response_model=JudgeVerdict,
            messages=[
                {"role": "system", "content": JUDGE_SYSTEM_PROMPT},
                {"role": "user", "content": json.dumps(context)},
            ],
            temperature=0.2,
            max_retries=1,
        )

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def check(
        self,
        draft: Draft,
        session: SessionState,
        menu: List[MenuItem],
        user_text: str = "",
        attempt: int = 1,
        dialogue_state: Optional[DialogueState] = None,
    ) -> EvaluationResult:
        violations = self.rubric_violations(draft, session, menu, user_text, dialogue_state)
        if violations:
            result = EvaluationResult(passed=False, feedback=" ".join(violations), attempt=attempt)
            logger.info("Draft failed rubric (attempt %d): %s", attempt, result.feedback)
            self.log.record(result)
            return result

        if not self.use_llm_judge:
            result = EvaluationResult(passed=True, feedback="ok", attempt=attempt)
            self.log.record(result)
            return result

        try:
            verdict = self._judge(draft, session, menu, user_text)
        except (OpenAIError, InstructorRetryException, ValidationError, ValueError) as e:
            # Judge unavailable: do not block the reply
            logger.warning("Evaluator judge unavailable, passing draft: %s", e)
            return EvaluationResult(passed=True, feedback=f"judge unavailable: {type(e).__name__}", attempt=attempt)

        result = EvaluationResult(
            passed=verdict.passed,
            feedback=verdict.feedback,
            suggestion=verdict.suggestion if not verdict.passed else None,
            attempt=attempt,
        )
        logger.info("Judge verdict (attempt %d): passed=%s feedback=%s", attempt, result.passed, result.feedback)
        self.log.record(result)
        return result
