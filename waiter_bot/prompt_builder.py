"""
Prompt builder for the model-assisted path.

The system prompt carries everything the model must not get wrong: the exact
cart and total, the full menu with prices, the advisory conversation state
and the hard rules. The user turn carries the message plus a JSON snapshot of
the cart so the model sees the same numbers twice.
"""

import json
from typing import Any, Dict, List, Optional

from .config import CURRENCY_PREFIX, PROMPT_HISTORY_MESSAGES
from .replies import format_price
from .schemas import CartLine, DialogueState, MenuItem, SessionState, TenantConfig
from .state_machine import context_for_state


# =============================================================================
# MASTER PROMPT TEMPLATE
# =============================================================================
# Placeholders:
#   __RESTAURANT_NAME__ - Tenant display name
#   __MENU__            - One line per menu item with price and categories
#   __CATEGORIES__      - Comma-separated categories that exist on the menu
#   __CART__            - Exact cart lines, or "(empty)"
#   __TOTAL__           - Cart total with currency
#   __STATE__           - Advisory dialogue state and its guidance
#   __LAST_INTENT__     - Intent of the previous assistant turn
# =============================================================================

MASTER_PROMPT_TEMPLATE = '''You are a concise, friendly ordering assistant for __RESTAURANT_NAME__.

You ALWAYS have the full menu below. Never claim you don't have the menu.

MENU (the ONLY items that exist; prices in __CURRENCY__):
__MENU__

CATEGORIES ON THE MENU: __CATEGORIES__

CURRENT CART (authoritative, already saved):
__CART__
CART TOTAL: __TOTAL__

CONVERSATION STATE: __STATE__
PREVIOUS ASSISTANT INTENT: __LAST_INTENT__

HARD RULES:
1. NEVER mention, suggest or invent items or categories that are not in MENU.
   If a category (for example drinks or desserts) is not listed above, we do not serve it.
2. NEVER misreport the cart. If CURRENT CART lists items, the cart is NOT empty.
   Use exactly the quantities and total shown above.
3. NEVER add items again that are already in the cart just because the customer
   confirmed checkout. When the customer confirms checkout, use intent "confirm"
   and leave order_items empty.
4. When the customer asks for items or agrees to your suggestion, use intent
   "add_to_cart" and list ONLY the new items in order_items, using exact menu titles.
5. Keep replies short. Plain text only inside reply_text: no JSON, no markdown code,
   no notes about evaluation or quality.
6. Occasionally suggest one other item from MENU that pairs well with the order.

Respond ONLY with a JSON object of this shape:
{"reply_text": "<what the customer sees>",
 "intent": "greeting|show_menu|add_to_cart|cart_status|confirm|recommend|question|unknown",
 "order_items": [{"name": "<exact menu title>", "quantity": 1}]}
'''

USER_PROMPT_TEMPLATE = '''Customer message: {user_message}

Cart snapshot (JSON): {cart_json}'''


def render_menu(menu: List[MenuItem]) -> str:
    if not menu:
        return "(no items available)"
    lines = []
    for item in menu:
        line = f"- {item.title}: {format_price(item.price)}"
        if item.tags:
            line += f" [{', '.join(item.tags)}]"
        if item.description:
            line += f" - {item.description}"
        lines.append(line)
    return "\n".join(lines)


def render_categories(menu: List[MenuItem]) -> str:
    categories: List[str] = []
    for item in menu:
        for tag in item.tags:
            if tag.lower() not in (c.lower() for c in categories):
                categories.append(tag)
    return ", ".join(categories) if categories else "(uncategorized)"


def render_cart(cart: List[CartLine]) -> str:
    if not cart:
        return "(empty)"
    return "\n".join(
        f"- {line.qty} x {line.title} @ {format_price(line.unit_price)} = {format_price(line.subtotal)}"
        for line in cart
    )


def cart_snapshot(cart: List[CartLine]) -> List[Dict[str, Any]]:
    return [{"title": line.title, "qty": line.qty, "unit_price": line.unit_price} for line in cart]


def build_system_prompt(
    session: SessionState,
    menu: List[MenuItem],
    tenant_config: Optional[TenantConfig] = None,
    dialogue_state: Optional[DialogueState] = None,
    guidance: Optional[str] = None,
) -> str:
    state = dialogue_state or session.dialogue_state
    state_text = state.value
    hint = context_for_state(state)
    if hint:
        state_text = f"{state_text} ({hint})"

    prompt = (
        MASTER_PROMPT_TEMPLATE
        .replace("__RESTAURANT_NAME__", tenant_config.name if tenant_config else "our restaurant")
        .replace("__CURRENCY__", CURRENCY_PREFIX)
        .replace("__MENU__", render_menu(menu))
        .replace("__CATEGORIES__", render_categories(menu))
        .replace("__CART__", render_cart(session.cart))
        .replace("__TOTAL__", format_price(round(session.cart_total(), 2)))
        .replace("__STATE__", state_text)
        .replace("__LAST_INTENT__", session.last_intent or "none")
    )
    if guidance:
        prompt += f"\n{guidance}\n"
    return prompt


def build_messages(
    session: SessionState,
    menu: List[MenuItem],
    user_text: str,
    tenant_config: Optional[TenantConfig] = None,
    dialogue_state: Optional[DialogueState] = None,
    feedback: Optional[str] = None,
    guidance: Optional[str] = None,
    history_limit: int = PROMPT_HISTORY_MESSAGES,
) -> List[Dict[str, str]]:
    """
    Build the chat messages for one drafting attempt.

    Args:
        session: Current session (cart, history, last intent)
        menu: Tenant menu snapshot
        user_text: The customer's message for this turn
        tenant_config: Tenant display settings
        dialogue_state: Advisory state for this turn (defaults to the session's)
        feedback: Evaluator feedback from the previous failed attempt, appended verbatim
        guidance: Extra standing instructions (recurring evaluator findings)
        history_limit: How many past messages to replay
    """
    messages = [{
        "role": "system",
        "content": build_system_prompt(session, menu, tenant_config, dialogue_state, guidance),
    }]

    recent = session.history[-history_limit:] if history_limit > 0 else []
    for message in recent:
        messages.append({"role": message.role, "content": message.content})

    messages.append({
        "role": "user",
        "content": USER_PROMPT_TEMPLATE.format(
            user_message=user_text,
            cart_json=json.dumps(cart_snapshot(session.cart)),
        ),
    })

    if feedback:
        messages.append({
            "role": "system",
            "content": f"IMPROVEMENT NEEDED: {feedback}\n\nPlease fix these issues in your next response.",
        })

    return messages
