"""
Unified message processing for all chat channels.

This module provides a single MessageProcessor class that handles the complete
lifecycle of one user message:
- Request validation
- Menu and tenant lookup (once per request)
- Session load, under the per-key lock for the whole turn
- Routing: deterministic fast path or model-assisted path
- Cart mutation, checkout, reply post-processing
- One atomic session save at the very end

Channel adapters (web widget, WhatsApp webhook) only translate their payloads
to and from InboundMessage / OutboundReply.

Turn recording:
---------------
Handlers never touch the stored session. They compute a TurnOutcome: the reply,
a list of cart operations, the flags to set and the new dialogue state. The
outcome is applied by `SessionStore.save(key, outcome.apply)`, which replays
the cart operations on the latest stored cart. If anything raises before that
point, the session is left exactly as it was.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from .affirmative import recommended_in, resolve_affirmative
from .cart_engine import (
    CartEngine,
    ResolvedItem,
    add_to_cart,
    checkout,
    remove_from_cart,
    settle_cart,
)
from .config import HISTORY_MAX_MESSAGES
from .errors import InvalidRequestError, SessionConflictError
from .intent_router import Route, classify
from .orchestrator import ResponseOrchestrator
from .parsers.constants import ALL_ITEMS_RE, CHECKOUT_QUESTION_RE, PRICE_QUESTION_RE
from .parsers.deterministic import has_quantity_phrase, parse_removal
from .postprocess import PostProcessContext, apply_policies, guard_checkout_duplicates
from .replies import (
    APOLOGY_REPLY,
    CLARIFY_REPLY,
    HELP_REPLY,
    added_reply,
    cart_status_reply,
    checkout_empty_reply,
    checkout_failed_reply,
    checkout_question_reply,
    checkout_submitted_reply,
    cleared_reply,
    declined_reply,
    greeting_reply,
    menu_reply,
    nothing_removed_reply,
    removed_reply,
    total_reply,
)
from .schemas import (
    CartLine,
    CartSnapshot,
    CartSnapshotLine,
    ContextType,
    DialogueState,
    InboundMessage,
    OutboundReply,
    SessionState,
    TenantConfig,
)
from .services.menu import MenuProvider
from .services.order import OrderSink
from .services.session import SessionStore, make_session_key
from .state_machine import next_state

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Cart Operations
# -----------------------------------------------------------------------------

@dataclass
class AddLine:
    item_id: str
    title: str
    qty: int
    unit_price: float

    def apply(self, cart: List[CartLine]) -> None:
        add_to_cart(cart, self.item_id, self.title, self.qty, self.unit_price)


@dataclass
class RemoveLine:
    item_id: str
    qty: Optional[int] = None  # None removes the whole line

    def apply(self, cart: List[CartLine]) -> None:
        remove_from_cart(cart, self.item_id, self.qty)


@dataclass
class ClearCart:
    def apply(self, cart: List[CartLine]) -> None:
        cart.clear()


@dataclass
class SettleLines:
    """Take checked-out lines off the cart."""
    lines: List[CartLine]

    def apply(self, cart: List[CartLine]) -> None:
        settle_cart(cart, self.lines)


CartOp = Union[AddLine, RemoveLine, ClearCart, SettleLines]


# -----------------------------------------------------------------------------
# Data Classes
# -----------------------------------------------------------------------------

@dataclass
class TurnOutcome:
    """Everything one turn changes. `None` flags mean "leave as is"."""
    user_text: str
    reply_text: str
    intent: str
    ops: List[CartOp] = field(default_factory=list)
    dialogue_state: Optional[DialogueState] = None
    last_suggested: Optional[List[str]] = None
    awaiting_confirmation: Optional[bool] = None
    context_type: ContextType = ContextType.CONVERSATION

    # Items were added from this message or from an earlier pending one
    applied: bool = False

    order_id: Optional[str] = None
    persist: bool = True
    history_limit: int = HISTORY_MAX_MESSAGES

    def apply(self, state: SessionState) -> None:
        """Mutator for SessionStore.save. Safe to run more than once on fresh state."""
        for op in self.ops:
            op.apply(state.cart)

        if self.applied:
            for message in state.history:
                if message.role == "user":
                    message.applied = True
        state.append_history("user", self.user_text, self.history_limit, applied=self.applied)
        state.append_history("assistant", self.reply_text, self.history_limit)

        if self.dialogue_state is not None:
            state.dialogue_state = self.dialogue_state
        if self.last_suggested is not None:
            state.last_suggested = list(self.last_suggested)
        if self.awaiting_confirmation is not None:
            state.awaiting_confirmation = self.awaiting_confirmation
        state.last_context_type = self.context_type
        state.last_intent = self.intent


def preview_cart(cart: List[CartLine], ops: List[CartOp]) -> List[CartLine]:
    """The cart as it will look once `ops` are applied."""
    preview = [line.model_copy() for line in cart]
    for op in ops:
        op.apply(preview)
    return preview


def cart_snapshot(cart: List[CartLine]) -> CartSnapshot:
    return CartSnapshot(
        item_count=sum(line.qty for line in cart),
        lines=[CartSnapshotLine(title=line.title, qty=line.qty) for line in cart],
    )


# -----------------------------------------------------------------------------
# MessageProcessor Class
# -----------------------------------------------------------------------------

Handler = Callable[[str, SessionState, CartEngine, TenantConfig], TurnOutcome]


class MessageProcessor:
    """
    Unified message processing for all channels.

    Usage:
        processor = MessageProcessor(menu_provider, store, order_sink, orchestrator)
        reply = processor.process({"tenant_id": "pizza-palace", "user_id": "+9198...", "text": "2 burgers"})
    """

    def __init__(
        self,
        menu_provider: MenuProvider,
        store: SessionStore,
        order_sink: OrderSink,
        orchestrator: Optional[ResponseOrchestrator] = None,
        history_limit: int = HISTORY_MAX_MESSAGES,
    ):
        self.menu_provider = menu_provider
        self.store = store
        self.order_sink = order_sink
        self.orchestrator = orchestrator
        self.history_limit = history_limit

        self._fast_handlers: Dict[str, Handler] = {
            "greeting": self._handle_greeting,
            "clear_cart": self._handle_clear_cart,
            "cart_total": self._handle_cart_total,
            "checkout": self._handle_checkout,
            "remove_item": self._handle_remove_item,
            "quantity_order": self._handle_quantity_order,
            "show_menu": self._handle_show_menu,
            "cart_status": self._handle_cart_status,
            "help": self._handle_help,
            "decline": self._handle_decline,
            "affirmative": self._handle_affirmative,
        }

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def process(self, inbound: Union[InboundMessage, Dict[str, Any]]) -> OutboundReply:
        """
        Process one inbound message and return the reply.

        Raises:
            InvalidRequestError: malformed inbound payload (nothing is touched)
            UnknownTenantError: the tenant has no menu (nothing is touched)
        """
        message = self._validate(inbound)

        # Menu is fetched once and shared by every step of this request
        menu = self.menu_provider.get(message.tenant_id)
        tenant_config = self.menu_provider.get_tenant_config(message.tenant_id)
        key = make_session_key(message.tenant_id, message.user_id)

        with self.store.lock(key):
            session = self.store.load(key)
            decision = classify(message.text, tenant_config)
            logger.info("Session %s: route=%s intent=%s", key, decision.route.value, decision.intent)

            if decision.route == Route.IGNORE:
                return self._reply(key, session.cart, "", "ignore")

            engine = CartEngine(menu)
            text = message.text.strip()
            outcome: Optional[TurnOutcome] = None
            if decision.route == Route.FAST:
                outcome = self._fast_handlers[decision.intent](text, session, engine, tenant_config)
            if outcome is None:
                outcome = self._handle_model_assisted(text, session, engine, tenant_config)
            outcome.history_limit = self.history_limit

            if not outcome.persist:
                return self._reply(key, session.cart, outcome.reply_text, outcome.intent)

            try:
                saved = self.store.save(key, outcome.apply)
            except SessionConflictError:
                logger.error("Session %s could not be saved; turn dropped (order_id=%s)", key, outcome.order_id)
                return self._reply(key, session.cart, APOLOGY_REPLY, "error")

        return self._reply(key, saved.cart, outcome.reply_text, outcome.intent, outcome.order_id)

    def _validate(self, inbound: Union[InboundMessage, Dict[str, Any]]) -> InboundMessage:
        if isinstance(inbound, InboundMessage):
            return inbound
        try:
            return InboundMessage.model_validate(inbound)
        except ValidationError as e:
            raise InvalidRequestError(f"Malformed inbound message: {e.error_count()} error(s)") from e

    def _reply(
        self,
        key: str,
        cart: List[CartLine],
        reply_text: str,
        intent: str,
        order_id: Optional[str] = None,
    ) -> OutboundReply:
        return OutboundReply(
            reply_text=reply_text,
            intent=intent,
            cart_snapshot=cart_snapshot(cart),
            session_key=key,
            order_id=order_id,
        )

    def _state_after(self, text: str, session: SessionState, intent: str) -> DialogueState:
        return next_state(
            session.dialogue_state,
            text,
            session.last_assistant_message(),
            cart_empty=not session.cart,
            intent=intent,
        )

    # -------------------------------------------------------------------------
    # Fast path handlers
    # -------------------------------------------------------------------------

    def _handle_greeting(self, text, session, engine, tenant_config) -> TurnOutcome:
        return TurnOutcome(
            user_text=text,
            reply_text=greeting_reply(tenant_config),
            intent="greeting",
            dialogue_state=self._state_after(text, session, "greeting"),
        )

    def _handle_show_menu(self, text, session, engine, tenant_config) -> TurnOutcome:
        return TurnOutcome(
            user_text=text,
            reply_text=menu_reply(engine.menu),
            intent="show_menu",
            dialogue_state=DialogueState.MENU_EXPLORATION,
            last_suggested=[],
            awaiting_confirmation=False,
            context_type=ContextType.MENU_LISTING,
        )

    def _handle_cart_status(self, text, session, engine, tenant_config) -> TurnOutcome:
        return TurnOutcome(
            user_text=text,
            reply_text=cart_status_reply(session.cart),
            intent="cart_status",
            dialogue_state=DialogueState.CART_REVIEW,
            awaiting_confirmation=bool(session.cart),
        )

    def _handle_cart_total(self, text, session, engine, tenant_config) -> TurnOutcome:
        # "2 burgers and what's the total": add first, the add reply carries the total
        if has_quantity_phrase(text) and not PRICE_QUESTION_RE.match(text):
            resolved = engine.extract(text)
            if resolved:
                return self._add_outcome(text, session, resolved, "add_to_cart")

        # Otherwise read-only: no cart operations
        return TurnOutcome(
            user_text=text,
            reply_text=total_reply(session.cart),
            intent="cart_total",
            dialogue_state=DialogueState.CART_REVIEW,
            awaiting_confirmation=bool(session.cart),
        )

    def _handle_help(self, text, session, engine, tenant_config) -> TurnOutcome:
        return TurnOutcome(user_text=text, reply_text=HELP_REPLY, intent="help")

    def _handle_decline(self, text, session, engine, tenant_config) -> TurnOutcome:
        # Whatever was offered is off the table
        return TurnOutcome(
            user_text=text,
            reply_text=declined_reply(session.cart),
            intent="decline",
            dialogue_state=DialogueState.CART_REVIEW if session.cart else DialogueState.MENU_EXPLORATION,
            last_suggested=[],
            awaiting_confirmation=False,
        )

    def _handle_checkout(self, text, session, engine, tenant_config) -> TurnOutcome:
        result = checkout(session.tenant_id, session.user_id, session.cart, self.order_sink)

        if result.status == "empty":
            return TurnOutcome(
                user_text=text,
                reply_text=checkout_empty_reply(),
                intent="checkout_empty",
                dialogue_state=DialogueState.MENU_EXPLORATION,
                awaiting_confirmation=False,
            )

        if result.status == "failed":
            return TurnOutcome(
                user_text=text,
                reply_text=checkout_failed_reply(session.cart),
                intent="checkout_failed",
                dialogue_state=DialogueState.CHECKOUT_CONFIRMATION,
                awaiting_confirmation=True,
            )

        ordered = [line.model_copy() for line in session.cart]
        logger.info("Order %s placed for %s/%s, total %.2f",
                    result.order_id, session.tenant_id, session.user_id, result.total)
        return TurnOutcome(
            user_text=text,
            reply_text=checkout_submitted_reply(result.order_id, ordered, result.total),
            intent="checkout",
            ops=[SettleLines(lines=ordered)],
            dialogue_state=DialogueState.ORDER_CONFIRMED,
            last_suggested=[],
            awaiting_confirmation=False,
            order_id=result.order_id,
        )

    def _checkout_question(self, text: str, session: SessionState) -> TurnOutcome:
        """Ask before placing the order; only the customer's yes checks out."""
        return TurnOutcome(
            user_text=text,
            reply_text=checkout_question_reply(session.cart),
            intent="confirm",
            dialogue_state=DialogueState.CHECKOUT_CONFIRMATION,
            last_suggested=[],
            awaiting_confirmation=True,
        )

    def _handle_remove_item(self, text, session, engine, tenant_config) -> TurnOutcome:
        preview = [line.model_copy() for line in session.cart]
        ops: List[CartOp] = []
        removed: List[CartLine] = []

        for phrase, qty in parse_removal(text):
            item = engine.resolve(phrase)
            if item is None:
                continue
            count = remove_from_cart(preview, item.item_id, qty)
            if count:
                ops.append(RemoveLine(item_id=item.item_id, qty=qty))
                removed.append(CartLine(item_id=item.item_id, title=item.title, qty=count, unit_price=item.price))

        if not removed:
            reply = nothing_removed_reply(session.cart)
        else:
            reply = removed_reply(removed, preview)
        return TurnOutcome(
            user_text=text,
            reply_text=reply,
            intent="remove_item",
            ops=ops,
            dialogue_state=DialogueState.CART_REVIEW,
            awaiting_confirmation=False,
        )

    def _handle_clear_cart(self, text, session, engine, tenant_config) -> TurnOutcome:
        return TurnOutcome(
            user_text=text,
            reply_text=cleared_reply(),
            intent="clear_cart",
            ops=[ClearCart()],
            dialogue_state=DialogueState.MENU_EXPLORATION,
            last_suggested=[],
            awaiting_confirmation=False,
        )

    def _add_outcome(self, text: str, session: SessionState, resolved: List[ResolvedItem], intent: str) -> TurnOutcome:
        ops: List[CartOp] = [
            AddLine(item_id=r.item.item_id, title=r.item.title, qty=r.qty, unit_price=r.item.price)
            for r in resolved
        ]
        added = [
            CartLine(item_id=r.item.item_id, title=r.item.title, qty=r.qty, unit_price=r.item.price)
            for r in resolved
        ]
        return TurnOutcome(
            user_text=text,
            reply_text=added_reply(added, preview_cart(session.cart, ops)),
            intent=intent,
            ops=ops,
            dialogue_state=DialogueState.ITEM_SELECTION,
            last_suggested=[],
            awaiting_confirmation=False,
            applied=True,
        )

    def _handle_quantity_order(self, text, session, engine, tenant_config) -> Optional[TurnOutcome]:
        resolved = engine.extract(text)
        if not resolved:
            logger.debug("Quantity phrase in %r resolved to nothing; using model", text)
            return None
        return self._add_outcome(text, session, resolved, "add_to_cart")

    def _handle_affirmative(self, text, session, engine, tenant_config) -> TurnOutcome:
        resolution = resolve_affirmative(text, session, engine)

        if resolution.action == "decline":
            return self._handle_decline(text, session, engine, tenant_config)

        if resolution.action == "checkout":
            return self._handle_checkout(text, session, engine, tenant_config)

        if resolution.action == "add":
            logger.info("Affirmative resolved by %s: %s", resolution.strategy,
                        ", ".join(f"{r.qty} {r.item.title}" for r in resolution.items))
            return self._add_outcome(text, session, resolution.items, "add_to_cart")

        return TurnOutcome(user_text=text, reply_text=CLARIFY_REPLY, intent="clarify")

    # -------------------------------------------------------------------------
    # Model-assisted path
    # -------------------------------------------------------------------------

    def _handle_model_assisted(self, text, session, engine, tenant_config) -> TurnOutcome:
        if self.orchestrator is None:
            return TurnOutcome(user_text=text, reply_text=HELP_REPLY, intent="help")

        dialogue_state = self._state_after(text, session, None)
        result = self.orchestrator.build_reply(session, engine.menu, text, tenant_config, dialogue_state)
        if result.failed:
            # LLM unavailable: nothing from this turn is stored
            return TurnOutcome(user_text=text, reply_text=result.draft.reply_text, intent="error", persist=False)

        confirming = dialogue_state == DialogueState.CHECKOUT_CONFIRMATION
        # Only the model's own confirm places the order, never a corrected add
        if confirming and result.draft.intent in ("confirm", "checkout"):
            return self._handle_checkout(text, session, engine, tenant_config)

        ctx = PostProcessContext(cart=session.cart, dialogue_state=dialogue_state, user_text=text)
        draft = guard_checkout_duplicates(result.draft, ctx)

        ops: List[CartOp] = []
        re_added = False
        if draft.intent == "add_to_cart":
            in_cart = {line.item_id for line in session.cart} if confirming else set()
            seen = set()
            for r in engine.resolve_draft_items(draft.order_items):
                if r.item.item_id in in_cart:
                    re_added = True
                    continue
                if r.item.item_id in seen:
                    continue
                seen.add(r.item.item_id)
                ops.append(AddLine(item_id=r.item.item_id, title=r.item.title, qty=r.qty, unit_price=r.item.price))

        if session.cart and not ops and (re_added or draft.intent in ("confirm", "checkout")):
            return self._checkout_question(text, session)

        state = DialogueState.ITEM_SELECTION if ops else dialogue_state
        cart = preview_cart(session.cart, ops)
        ctx = PostProcessContext(cart=cart, dialogue_state=state, user_text=text)
        draft = apply_policies(draft, ctx)

        reply_lower = draft.reply_text.lower()
        recommended = recommended_in(draft.reply_text, engine, exclude=[line.item_id for line in cart])
        if ALL_ITEMS_RE.search(reply_lower) or (
            len(engine.menu) > 1 and len(engine.mentioned_items(draft.reply_text)) == len(engine.menu)
        ):
            context_type = ContextType.MENU_LISTING
            suggested: List[str] = []
        elif recommended:
            context_type = ContextType.RECOMMENDATION
            suggested = [item.item_id for item in recommended]
        else:
            context_type = ContextType.CONVERSATION
            suggested = []

        if result.evaluation is not None and not result.evaluation.passed:
            state = DialogueState.ERROR_RECOVERY

        return TurnOutcome(
            user_text=text,
            reply_text=draft.reply_text,
            intent=draft.intent,
            ops=ops,
            dialogue_state=state,
            last_suggested=suggested,
            awaiting_confirmation=bool(cart) and CHECKOUT_QUESTION_RE.search(draft.reply_text) is not None,
            context_type=context_type,
            applied=bool(ops),
        )
