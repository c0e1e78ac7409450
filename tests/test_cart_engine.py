"""
Tests for menu resolution, cart mutation and checkout.
"""
from conftest import FakeOrderSink

from waiter_bot.cart_engine import (
    CartEngine,
    ResolvedItem,
    add_resolved,
    add_to_cart,
    build_order_projection,
    cart_total,
    checkout,
    remove_from_cart,
    settle_cart,
)
from waiter_bot.schemas import DraftItem


def _quantities(cart):
    return {line.item_id: line.qty for line in cart}


class TestResolution:
    """Test phrase -> menu item resolution order."""

    def test_exact_title(self, menu):
        assert CartEngine(menu).resolve("Paneer Wrap").item_id == "wrap"

    def test_plural_title(self, menu):
        assert CartEngine(menu).resolve("burgers").item_id == "burger"

    def test_longest_title_wins(self, menu):
        assert CartEngine(menu).resolve("truffle melt burgers").item_id == "truffle"

    def test_alias(self, menu):
        assert CartEngine(menu).resolve("french fries").item_id == "fries"
        assert CartEngine(menu).resolve("chips").item_id == "fries"

    def test_unique_title_keyword(self, menu):
        assert CartEngine(menu).resolve("truffle").item_id == "truffle"
        assert CartEngine(menu).resolve("wraps").item_id == "wrap"

    def test_typo(self, menu):
        assert CartEngine(menu).resolve("fires").item_id == "fries"

    def test_category_with_one_item(self, menu):
        assert CartEngine(menu).resolve("sides").item_id == "fries"

    def test_ambiguous_category_is_dropped(self, menu):
        """Test that a tag shared by several items is not guessed."""
        engine = CartEngine([item for item in menu if item.item_id != "burger"] + [
            menu[0].model_copy(update={"item_id": "veg", "title": "Veg Burger", "tags": ["burgers"], "aliases": []}),
        ])
        assert engine.resolve("burgers") is None

    def test_unknown_phrase(self, menu):
        assert CartEngine(menu).resolve("pizza") is None


class TestExtract:
    """Test extraction plus resolution."""

    def test_spec_example(self, menu):
        resolved = CartEngine(menu).extract("2 burgers and 1 fries")
        assert [(r.item.item_id, r.qty) for r in resolved] == [("burger", 2), ("fries", 1)]

    def test_unresolved_phrases_dropped(self, menu):
        resolved = CartEngine(menu).extract("2 pizzas and 1 fries")
        assert [(r.item.item_id, r.qty) for r in resolved] == [("fries", 1)]

    def test_keyword_scan(self, menu):
        engine = CartEngine(menu)
        resolved = engine.extract("yes add chips", keyword_scan=True)
        assert [r.item.item_id for r in resolved] == ["fries"]

    def test_keyword_scan_off_by_default(self, menu):
        assert CartEngine(menu).extract("yes add chips") == []

    def test_resolve_draft_items_drops_unknown(self, menu):
        resolved = CartEngine(menu).resolve_draft_items([
            DraftItem(name="Burger", quantity=2),
            DraftItem(name="Coke", quantity=1),
        ])
        assert [(r.item.item_id, r.qty) for r in resolved] == [("burger", 2)]

    def test_mentioned_items(self, menu):
        found = CartEngine(menu).mentioned_items("Our Fries go great with a Burger")
        assert [item.item_id for item in found] == ["burger", "fries"]


class TestCartMutation:
    """Test merge, price pinning and removal."""

    def test_quantities_sum_per_item(self, menu):
        """Test that per-item quantity equals the sum of resolved quantities."""
        engine = CartEngine(menu)
        cart = []
        for text in ("2 burgers", "1 fries", "three burgers", "chips"):
            for resolved in engine.extract(text, keyword_scan=True):
                add_resolved(cart, resolved)
        assert _quantities(cart) == {"burger": 5, "fries": 2}
        assert len(cart) == 2

    def test_price_pinned_at_add_time(self, menu):
        cart = []
        add_resolved(cart, ResolvedItem(item=menu[0], qty=1))
        repriced = menu[0].model_copy(update={"price": 999})
        add_resolved(cart, ResolvedItem(item=repriced, qty=1))
        assert cart[0].qty == 2
        assert cart[0].unit_price == 100

    def test_remove_whole_line(self, cart_250):
        assert remove_from_cart(cart_250, "fries") == 1
        assert _quantities(cart_250) == {"burger": 2}

    def test_remove_partial(self, cart_250):
        assert remove_from_cart(cart_250, "burger", 1) == 1
        assert _quantities(cart_250) == {"burger": 1, "fries": 1}

    def test_remove_more_than_held_drops_line(self, cart_250):
        assert remove_from_cart(cart_250, "burger", 5) == 2
        assert "burger" not in _quantities(cart_250)

    def test_remove_missing_item(self, cart_250):
        assert remove_from_cart(cart_250, "wrap") == 0
        assert len(cart_250) == 2

    def test_settle_keeps_later_additions(self, cart_250):
        ordered = [line.model_copy() for line in cart_250]
        add_to_cart(cart_250, "fries", "Fries", 1, 50)
        add_to_cart(cart_250, "wrap", "Paneer Wrap", 1, 120)
        settle_cart(cart_250, ordered)
        assert _quantities(cart_250) == {"fries": 1, "wrap": 1}

    def test_cart_total(self, cart_250):
        assert cart_total(cart_250) == 250


class TestCheckout:
    """Test order projection and submission."""

    def test_projection(self, cart_250):
        projection = build_order_projection("t", "u", cart_250)
        assert projection.total == 250
        assert [(l.title, l.qty, l.subtotal) for l in projection.lines] == [("Burger", 2, 200), ("Fries", 1, 50)]

    def test_submit(self, cart_250):
        sink = FakeOrderSink()
        result = checkout("t", "u", cart_250, sink)
        assert result.submitted
        assert result.order_id == "ORD-1"
        assert result.total == 250
        assert len(sink.orders) == 1
        # checkout itself never touches the cart
        assert len(cart_250) == 2

    def test_empty_cart_rejected_without_order(self):
        sink = FakeOrderSink()
        result = checkout("t", "u", [], sink)
        assert result.status == "empty"
        assert sink.orders == []

    def test_sink_failure(self, cart_250):
        result = checkout("t", "u", cart_250, FakeOrderSink(fail=True))
        assert result.status == "failed"
        assert result.order_id is None
        assert not result.submitted
