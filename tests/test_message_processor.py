"""
End-to-end tests for MessageProcessor: routing, cart mutation, checkout and
session persistence, with the LLM and the order sink faked.
"""
import json

import pytest
from conftest import TENANT_ID, USER_ID, FakeLLM, FakeOrderSink

from waiter_bot.errors import InvalidRequestError, UnknownTenantError
from waiter_bot.evaluator import Evaluator
from waiter_bot.message_processor import (
    AddLine,
    ClearCart,
    MessageProcessor,
    RemoveLine,
    SettleLines,
    TurnOutcome,
    preview_cart,
)
from waiter_bot.orchestrator import ResponseOrchestrator
from waiter_bot.replies import APOLOGY_REPLY, CLARIFY_REPLY, HELP_REPLY
from waiter_bot.schemas import CartLine, ContextType, DialogueState, InboundMessage, SessionState
from waiter_bot.services.session import make_session_key

KEY = make_session_key(TENANT_ID, USER_ID)


def _out(reply_text, intent="question", order_items=None):
    return json.dumps({"reply_text": reply_text, "intent": intent, "order_items": order_items or []})


def _processor(menu_provider, store, order_sink, *outputs):
    llm = FakeLLM(*outputs)
    orchestrator = ResponseOrchestrator(llm, Evaluator(use_llm_judge=False))
    return MessageProcessor(menu_provider, store, order_sink, orchestrator), llm


def _send(processor, text):
    return processor.process({"tenant_id": TENANT_ID, "user_id": USER_ID, "text": text})


def _cart(store):
    return [(line.title, line.qty) for line in store.load(KEY).cart]


class TestQuantityOrders:
    """Test deterministic adds."""

    def test_two_items_added(self, menu_provider, store, order_sink):
        processor, llm = _processor(menu_provider, store, order_sink)
        reply = _send(processor, "2 burgers and 1 fries")

        assert reply.intent == "add_to_cart"
        assert _cart(store) == [("Burger", 2), ("Fries", 1)]
        assert store.load(KEY).cart_total() == 250
        assert "Rs.250" in reply.reply_text
        assert reply.cart_snapshot.item_count == 3
        assert reply.session_key == KEY
        assert llm.calls == []

    def test_repeat_order_increments(self, menu_provider, store, order_sink):
        processor, _ = _processor(menu_provider, store, order_sink)
        _send(processor, "1 burger")
        _send(processor, "2 burgers")
        assert _cart(store) == [("Burger", 3)]

    def test_unknown_item_goes_to_model(self, menu_provider, store, order_sink):
        processor, llm = _processor(
            menu_provider, store, order_sink,
            _out("Sorry, that's not on our menu. We have Burger, Fries, Truffle Melt Burger and Paneer Wrap."),
        )
        reply = _send(processor, "2 tacos")
        assert len(llm.calls) == 1
        assert _cart(store) == []
        assert reply.intent == "question"


class TestCartQueries:
    """Test read-only cart questions."""

    def test_total_does_not_mutate(self, menu_provider, store, order_sink):
        processor, _ = _processor(menu_provider, store, order_sink)
        _send(processor, "2 burgers and 1 fries")
        reply = _send(processor, "what is my total")

        assert reply.intent == "cart_total"
        assert "Rs.250" in reply.reply_text
        assert _cart(store) == [("Burger", 2), ("Fries", 1)]
        state = store.load(KEY)
        assert state.dialogue_state == DialogueState.CART_REVIEW
        assert state.awaiting_confirmation

    def test_items_named_with_total_question_are_added(self, menu_provider, store, order_sink):
        """Test that '2 burgers and what's the total' adds before answering."""
        processor, llm = _processor(menu_provider, store, order_sink)
        reply = _send(processor, "2 burgers and what's the total")

        assert reply.intent == "add_to_cart"
        assert _cart(store) == [("Burger", 2)]
        assert "Rs.200" in reply.reply_text
        assert llm.calls == []

    def test_price_question_does_not_add(self, menu_provider, store, order_sink):
        processor, _ = _processor(menu_provider, store, order_sink)
        _send(processor, "1 fries")
        reply = _send(processor, "how much is it with 2 burgers")
        assert reply.intent == "cart_total"
        assert _cart(store) == [("Fries", 1)]

    def test_cart_status_empty(self, menu_provider, store, order_sink):
        processor, _ = _processor(menu_provider, store, order_sink)
        reply = _send(processor, "show my cart")
        assert reply.intent == "cart_status"
        assert "empty" in reply.reply_text.lower()

    def test_show_menu(self, menu_provider, store, order_sink):
        processor, _ = _processor(menu_provider, store, order_sink)
        reply = _send(processor, "can I see the menu?")
        assert reply.intent == "show_menu"
        assert "Truffle Melt Burger: Rs.180" in reply.reply_text
        state = store.load(KEY)
        assert state.last_context_type == ContextType.MENU_LISTING
        assert state.dialogue_state == DialogueState.MENU_EXPLORATION

    def test_greeting_uses_restaurant_name(self, menu_provider, store, order_sink):
        processor, _ = _processor(menu_provider, store, order_sink)
        assert "Pizza Palace" in _send(processor, "hello").reply_text


class TestCheckout:
    """Test order submission."""

    def test_checkout_creates_order_and_empties_cart(self, menu_provider, store, order_sink):
        processor, _ = _processor(menu_provider, store, order_sink)
        _send(processor, "2 burgers and 1 fries")
        reply = _send(processor, "checkout")

        assert reply.intent == "checkout"
        assert reply.order_id == "ORD-1"
        assert "ORD-1" in reply.reply_text
        assert len(order_sink.orders) == 1
        assert order_sink.orders[0].total == 250
        assert [(l.title, l.qty) for l in order_sink.orders[0].lines] == [("Burger", 2), ("Fries", 1)]

        state = store.load(KEY)
        assert state.cart == []
        assert not state.awaiting_confirmation
        assert state.dialogue_state == DialogueState.ORDER_CONFIRMED
        assert reply.cart_snapshot.item_count == 0

    def test_empty_cart_checkout_creates_no_order(self, menu_provider, store, order_sink):
        processor, _ = _processor(menu_provider, store, order_sink)
        reply = _send(processor, "checkout")
        assert reply.intent == "checkout_empty"
        assert order_sink.orders == []
        assert reply.order_id is None

    def test_failed_checkout_keeps_cart(self, menu_provider, store):
        processor, _ = _processor(menu_provider, store, FakeOrderSink(fail=True))
        _send(processor, "2 burgers and 1 fries")
        reply = _send(processor, "place my order")

        assert reply.intent == "checkout_failed"
        assert _cart(store) == [("Burger", 2), ("Fries", 1)]
        state = store.load(KEY)
        assert state.dialogue_state == DialogueState.CHECKOUT_CONFIRMATION
        assert state.awaiting_confirmation

    def test_yes_to_checkout_question_places_order(self, menu_provider, store, order_sink):
        processor, _ = _processor(menu_provider, store, order_sink)
        _send(processor, "2 burgers and 1 fries")
        _send(processor, "what's my total")
        reply = _send(processor, "yes")

        assert reply.intent == "checkout"
        assert len(order_sink.orders) == 1
        assert _cart(store) == []

    def test_model_confirm_during_checkout_confirmation(self, menu_provider, store):
        """Test that a confirm drafted while confirming checkout places the real order."""
        sink = FakeOrderSink(fail=True)
        processor, llm = _processor(
            menu_provider, store, sink,
            _out("Placing it now!", "confirm"),
        )
        _send(processor, "2 burgers and 1 fries")
        _send(processor, "checkout")
        sink.fail = False

        reply = _send(processor, "go ahead with it")
        assert len(llm.calls) == 1
        assert reply.intent == "checkout"
        assert len(sink.orders) == 1
        assert _cart(store) == []

    def test_new_item_while_confirming_is_added_not_ordered(self, menu_provider, store):
        """Test that asking for something new after a failed checkout adds it and places nothing."""
        sink = FakeOrderSink(fail=True)
        processor, _ = _processor(
            menu_provider, store, sink,
            _out("Sure, I've added Fries to your order.", "add_to_cart", [{"name": "Fries", "quantity": 1}]),
        )
        _send(processor, "2 burgers")
        _send(processor, "checkout")
        sink.fail = False

        reply = _send(processor, "can I also get some fries?")
        assert reply.intent == "add_to_cart"
        assert reply.order_id is None
        assert sink.orders == []
        assert _cart(store) == [("Burger", 2), ("Fries", 1)]
        assert store.load(KEY).dialogue_state == DialogueState.ITEM_SELECTION

        _send(processor, "checkout")
        assert [(l.title, l.qty) for l in sink.orders[0].lines] == [("Burger", 2), ("Fries", 1)]

    def test_re_add_while_confirming_asks_before_ordering(self, menu_provider, store):
        """Test that a drafted re-add of cart items becomes a question, not a checkout."""
        sink = FakeOrderSink(fail=True)
        re_add = _out("Placing your burgers!", "add_to_cart", [{"name": "Burger", "quantity": 2}])
        processor, _ = _processor(menu_provider, store, sink, re_add, re_add)
        _send(processor, "2 burgers")
        _send(processor, "checkout")
        sink.fail = False

        reply = _send(processor, "the burgers, like i said")
        assert reply.intent == "confirm"
        assert reply.order_id is None
        assert sink.orders == []
        assert reply.reply_text == "Your order so far: 2 Burger. Total: Rs.200. Shall I place your order?"
        assert _cart(store) == [("Burger", 2)]
        state = store.load(KEY)
        assert state.dialogue_state == DialogueState.CHECKOUT_CONFIRMATION
        assert state.awaiting_confirmation

        assert _send(processor, "yes").order_id == "ORD-1"

    def test_model_checkout_outside_confirmation_only_asks(self, menu_provider, store, order_sink):
        """Test that a drafted checkout never claims an order the sink did not receive."""
        processor, _ = _processor(
            menu_provider, store, order_sink,
            _out("Your order has been placed and sent to the kitchen!", "checkout"),
        )
        _send(processor, "2 burgers")
        reply = _send(processor, "send it to the kitchen please")

        assert reply.order_id is None
        assert order_sink.orders == []
        assert "has been placed" not in reply.reply_text
        assert reply.reply_text.endswith("Shall I place your order?")
        assert _cart(store) == [("Burger", 2)]
        state = store.load(KEY)
        assert state.dialogue_state == DialogueState.CHECKOUT_CONFIRMATION
        assert state.awaiting_confirmation

        assert _send(processor, "yes").intent == "checkout"
        assert len(order_sink.orders) == 1

    def test_order_placed_claim_in_conversation_replaced(self, menu_provider, store, order_sink):
        processor, _ = _processor(
            menu_provider, store, order_sink,
            _out("Great news, I've placed your order!", "question"),
        )
        _send(processor, "1 burger")
        reply = _send(processor, "is it on its way?")

        assert "placed your order" not in reply.reply_text
        assert "Shall I place your order?" in reply.reply_text
        assert order_sink.orders == []


class TestAffirmatives:
    """Test "yes" handling and duplicate protection."""

    def test_yes_after_recommendation_adds_it(self, menu_provider, store, order_sink):
        processor, _ = _processor(
            menu_provider, store, order_sink,
            _out("How about some Fries on the side?", "recommend"),
        )
        _send(processor, "1 burger")
        _send(processor, "anything to go with it?")
        assert store.load(KEY).last_suggested == ["fries"]

        reply = _send(processor, "yes")
        assert reply.intent == "add_to_cart"
        assert _cart(store) == [("Burger", 1), ("Fries", 1)]
        assert store.load(KEY).last_suggested == []

    def test_declining_a_recommendation_adds_nothing(self, menu_provider, store, order_sink):
        """Test that 'ok no thanks' after an offer leaves the offer out of the cart."""
        processor, _ = _processor(
            menu_provider, store, order_sink,
            _out("How about some Fries on the side?", "recommend"),
        )
        _send(processor, "1 burger")
        _send(processor, "anything to go with it?")

        reply = _send(processor, "ok no thanks")
        assert reply.intent == "decline"
        assert _cart(store) == [("Burger", 1)]
        assert "1 Burger" in reply.reply_text
        state = store.load(KEY)
        assert state.last_suggested == []
        assert state.dialogue_state == DialogueState.CART_REVIEW

        # The declined offer is not picked up by a later bare yes either
        assert _send(processor, "yes").intent == "clarify"
        assert _cart(store) == [("Burger", 1)]

    def test_yes_after_add_does_not_duplicate(self, menu_provider, store, order_sink):
        processor, _ = _processor(menu_provider, store, order_sink)
        _send(processor, "2 burgers and 1 fries")
        reply = _send(processor, "yes")

        assert reply.intent == "clarify"
        assert reply.reply_text == CLARIFY_REPLY
        assert _cart(store) == [("Burger", 2), ("Fries", 1)]

    def test_yes_with_nothing_to_add(self, menu_provider, store, order_sink):
        processor, _ = _processor(menu_provider, store, order_sink)
        reply = _send(processor, "yes")
        assert reply.intent == "clarify"
        assert _cart(store) == []

    def test_yes_naming_an_item(self, menu_provider, store, order_sink):
        processor, _ = _processor(menu_provider, store, order_sink)
        _send(processor, "yes add fries")
        assert _cart(store) == [("Fries", 1)]


class TestRemoveAndClear:
    """Test cart removal commands."""

    def test_remove_whole_line(self, menu_provider, store, order_sink):
        processor, _ = _processor(menu_provider, store, order_sink)
        _send(processor, "2 burgers and 1 fries")
        reply = _send(processor, "remove the fries")

        assert reply.intent == "remove_item"
        assert _cart(store) == [("Burger", 2)]
        assert "Rs.200" in reply.reply_text

    def test_remove_some_units(self, menu_provider, store, order_sink):
        processor, _ = _processor(menu_provider, store, order_sink)
        _send(processor, "2 burgers")
        _send(processor, "remove 1 burger")
        assert _cart(store) == [("Burger", 1)]

    def test_remove_missing_item(self, menu_provider, store, order_sink):
        processor, _ = _processor(menu_provider, store, order_sink)
        _send(processor, "2 burgers")
        reply = _send(processor, "remove the wrap")
        assert "couldn't find" in reply.reply_text
        assert _cart(store) == [("Burger", 2)]

    def test_clear_cart(self, menu_provider, store, order_sink):
        processor, _ = _processor(menu_provider, store, order_sink)
        _send(processor, "2 burgers and 1 fries")
        reply = _send(processor, "clear my cart")
        assert reply.intent == "clear_cart"
        assert _cart(store) == []


class TestModelAssisted:
    """Test the LLM path end to end."""

    def test_llm_add(self, menu_provider, store, order_sink):
        processor, _ = _processor(
            menu_provider, store, order_sink,
            _out("Added a Paneer Wrap to your order.", "add_to_cart", [{"name": "Paneer Wrap", "quantity": 1}]),
        )
        reply = _send(processor, "can I get a paneer wrap")
        assert reply.intent == "add_to_cart"
        assert _cart(store) == [("Paneer Wrap", 1)]
        state = store.load(KEY)
        assert state.cart[0].unit_price == 120
        assert state.dialogue_state == DialogueState.ITEM_SELECTION

    def test_false_empty_cart_claim_corrected(self, menu_provider, store, order_sink):
        processor, _ = _processor(
            menu_provider, store, order_sink,
            _out("Your cart is empty right now.", "cart_status"),
            _out("Your cart is empty right now.", "cart_status"),
        )
        _send(processor, "1 burger")
        reply = _send(processor, "remind me what i picked")

        assert "cart is empty" not in reply.reply_text.lower()
        assert "1 Burger" in reply.reply_text
        assert "Rs.100" in reply.reply_text
        assert _cart(store) == [("Burger", 1)]
        assert store.load(KEY).dialogue_state == DialogueState.ERROR_RECOVERY

    def test_llm_unavailable_persists_nothing(self, menu_provider, store, order_sink):
        processor, _ = _processor(menu_provider, store, order_sink)
        reply = _send(processor, "tell me a joke")

        assert reply.intent == "error"
        assert reply.reply_text == APOLOGY_REPLY
        assert store.load(KEY).history == []

    def test_history_recorded(self, menu_provider, store, order_sink):
        processor, _ = _processor(menu_provider, store, order_sink, _out("Our wrap is mild."))
        _send(processor, "is the wrap spicy")
        history = store.load(KEY).history
        assert [(m.role, m.content) for m in history] == [
            ("user", "is the wrap spicy"),
            ("assistant", "Our wrap is mild."),
        ]

    def test_without_orchestrator(self, menu_provider, store, order_sink):
        processor = MessageProcessor(menu_provider, store, order_sink)
        reply = _send(processor, "tell me a joke")
        assert reply.reply_text == HELP_REPLY


class TestRequestHandling:
    """Test validation and tenant lookup."""

    def test_missing_fields(self, menu_provider, store, order_sink):
        processor, _ = _processor(menu_provider, store, order_sink)
        with pytest.raises(InvalidRequestError):
            processor.process({"tenant_id": TENANT_ID, "text": "hi"})

    def test_empty_tenant(self, menu_provider, store, order_sink):
        processor, _ = _processor(menu_provider, store, order_sink)
        with pytest.raises(InvalidRequestError):
            processor.process({"tenant_id": "", "user_id": USER_ID, "text": "hi"})

    def test_unknown_tenant_touches_nothing(self, menu_provider, store, order_sink):
        processor, _ = _processor(menu_provider, store, order_sink)
        with pytest.raises(UnknownTenantError):
            processor.process({"tenant_id": "nowhere", "user_id": USER_ID, "text": "2 burgers"})
        assert store.load(make_session_key("nowhere", USER_ID)).version == 0

    def test_blank_text_ignored(self, menu_provider, store, order_sink):
        processor, _ = _processor(menu_provider, store, order_sink)
        reply = _send(processor, "   ")
        assert reply.intent == "ignore"
        assert reply.reply_text == ""
        assert store.load(KEY).history == []

    def test_accepts_inbound_model(self, menu_provider, store, order_sink):
        processor, _ = _processor(menu_provider, store, order_sink)
        reply = processor.process(InboundMessage(tenant_id=TENANT_ID, user_id=USER_ID, text="1 fries"))
        assert reply.intent == "add_to_cart"


class TestTurnOutcome:
    """Test the recorded turn replayed by SessionStore.save."""

    def test_ops_replayed(self, cart_250):
        ops = [
            AddLine(item_id="wrap", title="Paneer Wrap", qty=1, unit_price=120),
            RemoveLine(item_id="burger", qty=1),
        ]
        preview = preview_cart(cart_250, ops)
        assert [(l.item_id, l.qty) for l in preview] == [("burger", 1), ("fries", 1), ("wrap", 1)]
        assert [(l.item_id, l.qty) for l in cart_250] == [("burger", 2), ("fries", 1)]

    def test_settle_leaves_later_additions(self, cart_250):
        ordered = [line.model_copy() for line in cart_250]
        cart = preview_cart(cart_250, [AddLine(item_id="fries", title="Fries", qty=2, unit_price=50)])
        SettleLines(lines=ordered).apply(cart)
        assert [(l.item_id, l.qty) for l in cart] == [("fries", 2)]

    def test_applied_marks_earlier_user_messages(self):
        state = SessionState(tenant_id=TENANT_ID, user_id=USER_ID)
        state.append_history("user", "3 burgers?", 16)
        state.append_history("assistant", "Add 3 Burger?", 16)
        outcome = TurnOutcome(
            user_text="yes",
            reply_text="Added!",
            intent="add_to_cart",
            ops=[AddLine(item_id="burger", title="Burger", qty=3, unit_price=100)],
            applied=True,
        )
        outcome.apply(state)
        assert all(m.applied for m in state.history if m.role == "user")
        assert state.cart == [CartLine(item_id="burger", title="Burger", qty=3, unit_price=100)]
        assert state.last_intent == "add_to_cart"

    def test_clear(self, cart_250):
        assert preview_cart(cart_250, [ClearCart()]) == []
