"""
Templated replies for the deterministic fast path and for fallbacks.

Every number in these replies comes from the cart or the menu, never from a
model.
"""

from typing import Dict, Iterable, List, Optional

from .config import CURRENCY_PREFIX
from .schemas import CartLine, MenuItem, TenantConfig

SAFE_FALLBACK_REPLY = "I'd be happy to help with your order from our menu. What would you like today?"

APOLOGY_REPLY = "Sorry, something went wrong on our side. Please try again in a moment."

CLARIFY_REPLY = (
    "Sorry, I'm not sure what you'd like me to add. Could you tell me the item "
    "and how many? Say 'menu' to see everything we have."
)

HELP_REPLY = (
    "I can show you the menu, add items (for example \"2 burgers\"), tell you your total, "
    "remove items, or place your order. What would you like to do?"
)


def format_price(amount: float) -> str:
    if float(amount).is_integer():
        return f"{CURRENCY_PREFIX}{int(amount):,}"
    return f"{CURRENCY_PREFIX}{amount:,.2f}"


def describe_cart(cart: Iterable[CartLine]) -> str:
    return ", ".join(f"{line.qty} {line.title}" for line in cart)


def _total(cart: Iterable[CartLine]) -> float:
    return round(sum(line.subtotal for line in cart), 2)


def greeting_reply(tenant_config: Optional[TenantConfig] = None) -> str:
    name = tenant_config.name if tenant_config else "our restaurant"
    return f"Hi! Welcome to {name}. Say 'menu' to see what we have, or tell me what you'd like to order."


def menu_reply(menu: List[MenuItem]) -> str:
    if not menu:
        return "Sorry, there's nothing available to order right now."

    sections: Dict[str, List[MenuItem]] = {}
    for item in menu:
        category = item.tags[0].title() if item.tags else "Menu"
        sections.setdefault(category, []).append(item)

    lines = ["Here's our menu:"]
    for category, items in sections.items():
        lines.append(f"\n{category}:")
        for item in items:
            lines.append(f"- {item.title}: {format_price(item.price)}")
    lines.append("\nWhat would you like to order?")
    return "\n".join(lines)


def cart_status_reply(cart: List[CartLine]) -> str:
    if not cart:
        return "Your cart is empty. Say 'menu' to see what we have."
    return (
        f"Your current order: {describe_cart(cart)}. Total: {format_price(_total(cart))}. "
        "Would you like to add anything else or check out?"
    )


def total_reply(cart: List[CartLine]) -> str:
    if not cart:
        return "Your cart is empty, so your total is " + format_price(0) + "."
    return (
        f"Your current order: {describe_cart(cart)}. Total: {format_price(_total(cart))}. "
        "Would you like to check out now?"
    )


def added_reply(added: List[CartLine], cart: List[CartLine]) -> str:
    added_text = " and ".join(f"{line.qty} {line.title}" for line in added)
    return (
        f"Great! I've added {added_text} to your order. Your cart now has {describe_cart(cart)}. "
        f"The total comes to {format_price(_total(cart))}. Anything else?"
    )


def removed_reply(removed: List[CartLine], cart: List[CartLine]) -> str:
    removed_text = " and ".join(f"{line.qty} {line.title}" for line in removed)
    if not cart:
        return f"Done, I've removed {removed_text}. Your cart is now empty."
    return (
        f"Done, I've removed {removed_text}. Your cart now has {describe_cart(cart)}, "
        f"for a total of {format_price(_total(cart))}."
    )


def nothing_removed_reply(cart: List[CartLine]) -> str:
    if not cart:
        return "Your cart is already empty."
    return f"I couldn't find that in your cart. You currently have {describe_cart(cart)}."


def cleared_reply() -> str:
    return "Okay, I've cleared your cart. What would you like to order?"


def checkout_submitted_reply(order_id: str, lines: List[CartLine], total: float) -> str:
    return (
        f"Thank you! Your order #{order_id} has been placed: {describe_cart(lines)}. "
        f"Total: {format_price(total)}. We'll start preparing it right away."
    )


def checkout_empty_reply() -> str:
    return "Your cart is empty, so there's nothing to check out yet. Say 'menu' to see what we have."


def checkout_failed_reply(cart: List[CartLine]) -> str:
    return (
        f"Sorry, we couldn't place your order right now. Your cart is saved ({describe_cart(cart)}). "
        "Please say 'checkout' to try again in a moment."
    )


def cart_truth_reply(cart: List[CartLine]) -> str:
    return (
        f"Your cart currently contains {describe_cart(cart)}, for a total of {format_price(_total(cart))}. "
        "Would you like to add anything else or proceed to checkout?"
    )


def checkout_question_reply(cart: List[CartLine]) -> str:
    if not cart:
        return checkout_empty_reply()
    return (
        f"Your order so far: {describe_cart(cart)}. Total: {format_price(_total(cart))}. "
        "Shall I place your order?"
    )


def declined_reply(cart: List[CartLine]) -> str:
    if not cart:
        return "No problem. Say 'menu' whenever you'd like to see what we have."
    return (
        f"No problem. Your current order: {describe_cart(cart)}. Total: {format_price(_total(cart))}. "
        "Anything else, or shall I check out?"
    )
