"""
Tests for the draft / evaluate / retry loop.
"""
import json
from unittest.mock import MagicMock

from conftest import FakeLLM

from waiter_bot.errors import TransientUpstreamError
from waiter_bot.evaluator import Evaluator
from waiter_bot.orchestrator import ResponseOrchestrator
from waiter_bot.replies import APOLOGY_REPLY
from waiter_bot.schemas import EvaluationResult, JudgeVerdict, TenantConfig


def _out(reply_text, intent="question", order_items=None):
    return json.dumps({"reply_text": reply_text, "intent": intent, "order_items": order_items or []})


class TestFirstAttempt:
    """Test the happy path."""

    def test_passing_draft_returned(self, session, menu):
        llm = FakeLLM(_out("Our Paneer Wrap is mild."))
        result = ResponseOrchestrator(llm, Evaluator(use_llm_judge=False)).build_reply(session, menu, "spicy?")
        assert result.draft.reply_text == "Our Paneer Wrap is mild."
        assert result.attempts == 1
        assert result.evaluation.passed
        assert not result.failed
        assert len(llm.calls) == 1

    def test_plain_text_output_is_unknown_intent(self, session, menu):
        llm = FakeLLM("Hello! What would you like?")
        result = ResponseOrchestrator(llm, Evaluator(use_llm_judge=False)).build_reply(session, menu, "hmm")
        assert result.draft.intent == "unknown"
        assert result.draft.reply_text == "Hello! What would you like?"


class TestRetry:
    """Test retry with evaluator feedback."""

    def test_feedback_goes_into_next_prompt(self, session, menu):
        llm = FakeLLM(
            _out("Sure, one Coke!", "add_to_cart", [{"name": "Coke", "quantity": 1}]),
            _out("Sorry, we don't serve that. Can I get you Fries?"),
        )
        result = ResponseOrchestrator(llm, Evaluator(use_llm_judge=False)).build_reply(session, menu, "a coke")
        assert result.attempts == 2
        assert result.evaluation.passed
        assert result.draft.reply_text.startswith("Sorry, we don't serve that")

        retry_messages = llm.calls[1]
        assert retry_messages[-1]["role"] == "system"
        assert "MENU: 'Coke' is not on the menu." in retry_messages[-1]["content"]

    def test_suggestion_replaces_reply(self, session, menu):
        judge = MagicMock()
        judge.chat.completions.create.return_value = JudgeVerdict(
            passed=False, feedback="RELEVANCE: off topic", suggestion="Yes, the Paneer Wrap is vegetarian.",
        )
        llm = FakeLLM(_out("We have burgers."), _out("We have fries."))
        result = ResponseOrchestrator(llm, Evaluator(judge_client=judge)).build_reply(session, menu, "veg?")
        assert result.attempts == 2
        assert result.draft.reply_text == "Yes, the Paneer Wrap is vegetarian."
        assert not result.evaluation.passed
        assert not result.failed

    def test_last_draft_used_when_all_attempts_fail(self, session, menu):
        llm = FakeLLM(_out("Try a soda!"), _out("How about a soda?"))
        result = ResponseOrchestrator(llm, Evaluator(use_llm_judge=False)).build_reply(session, menu, "drinks?")
        assert result.draft.reply_text == "How about a soda?"
        assert not result.evaluation.passed

    def test_max_attempts_bounded(self, session, menu):
        llm = FakeLLM(*[_out("soda?")] * 5)
        ResponseOrchestrator(llm, Evaluator(use_llm_judge=False), max_attempts=3).build_reply(session, menu, "x")
        assert len(llm.calls) == 3


class TestUpstreamFailure:
    """Test LLM unavailability."""

    def test_transient_failure_then_success(self, session, menu):
        llm = FakeLLM(TransientUpstreamError("timeout"), _out("Hello!"))
        result = ResponseOrchestrator(llm, Evaluator(use_llm_judge=False)).build_reply(session, menu, "hi there")
        assert result.draft.reply_text == "Hello!"
        assert result.attempts == 2

    def test_persistent_failure_apologizes(self, session, menu):
        llm = FakeLLM(TransientUpstreamError("timeout"), TransientUpstreamError("timeout"))
        result = ResponseOrchestrator(llm, Evaluator(use_llm_judge=False)).build_reply(session, menu, "hi there")
        assert result.failed
        assert result.draft.intent == "error"
        assert result.draft.reply_text == APOLOGY_REPLY


class TestSkipEvaluation:
    """Test the low-latency bypass."""

    def test_global_skip(self, session, menu):
        evaluator = MagicMock()
        llm = FakeLLM(_out("Try a soda!"))
        result = ResponseOrchestrator(llm, evaluator, skip_evaluation=True).build_reply(session, menu, "x")
        assert result.draft.reply_text == "Try a soda!"
        assert result.evaluation is None
        evaluator.check.assert_not_called()

    def test_tenant_override(self, session, menu):
        evaluator = MagicMock()
        llm = FakeLLM(_out("Hi"))
        config = TenantConfig(tenant_id="t", skip_evaluation=True)
        ResponseOrchestrator(llm, evaluator, skip_evaluation=False).build_reply(session, menu, "x", config)
        evaluator.check.assert_not_called()

    def test_tenant_can_force_evaluation(self, session, menu):
        llm = FakeLLM(_out("Try a soda!"), _out("Fries?"))
        config = TenantConfig(tenant_id="t", skip_evaluation=False)
        result = ResponseOrchestrator(llm, Evaluator(use_llm_judge=False), skip_evaluation=True).build_reply(
            session, menu, "x", config
        )
        assert result.attempts == 2


class TestGuidance:
    """Test that recurring problems feed back into the prompt."""

    def test_improvement_hint_in_system_prompt(self, session, menu):
        evaluator = Evaluator(use_llm_judge=False)
        evaluator.log.record(EvaluationResult(passed=False, feedback="CART: wrong total"))
        llm = FakeLLM(_out("Hello!"))
        ResponseOrchestrator(llm, evaluator).build_reply(session, menu, "hi there")
        assert "SELF-IMPROVEMENT FOCUS" in llm.calls[0][0]["content"]
