"""
Response Orchestrator.

Drafts a reply for the model-assisted path:

    for attempt in 1..max_attempts:
        messages = build_messages(..., feedback=<previous failure>)
        draft    = LLM -> parse_llm_output -> draft_from_output
        result   = evaluator.check(draft)
        passed?  -> done
        failed?  -> feedback goes verbatim into the next prompt

An evaluator suggestion replaces the reply text outright. If every attempt
fails evaluation, the last draft is still used (with its suggestion if any);
post-processing keeps the hard guarantees. If the LLM itself is unavailable on
every attempt, the result is a templated apology with intent "error".

Temperature is the same on every attempt.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from .config import LLM_MAX_ATTEMPTS, SKIP_EVALUATION
from .errors import TransientUpstreamError
from .evaluator import Evaluator
from .llm_client import LLMClient, draft_from_output, parse_llm_output
from .prompt_builder import build_messages
from .replies import APOLOGY_REPLY
from .schemas import DialogueState, Draft, EvaluationResult, MenuItem, SessionState, TenantConfig

logger = logging.getLogger(__name__)


@dataclass
class OrchestrationResult:
    draft: Draft
    evaluation: Optional[EvaluationResult] = None
    attempts: int = 0
    failed: bool = False  # True when no draft could be produced at all


class ResponseOrchestrator:
    """
    Builds LLM context, drafts a reply and runs it through the evaluator.

    Usage:
        orchestrator = ResponseOrchestrator(LLMClient(), Evaluator())
        result = orchestrator.build_reply(session, menu, "anything spicy?", tenant_config)
    """

    def __init__(
        self,
        llm: LLMClient,
        evaluator: Optional[Evaluator] = None,
        max_attempts: int = LLM_MAX_ATTEMPTS,
        skip_evaluation: bool = SKIP_EVALUATION,
    ):
        self.llm = llm
        self.evaluator = evaluator or Evaluator()
        self.max_attempts = max(1, max_attempts)
        self.skip_evaluation = skip_evaluation

    def _skip_evaluation(self, tenant_config: Optional[TenantConfig]) -> bool:
        if tenant_config is not None and tenant_config.skip_evaluation is not None:
            return tenant_config.skip_evaluation
        return self.skip_evaluation

    def _draft(self, messages: List[dict]) -> Draft:
        raw = self.llm.complete(messages)
        return draft_from_output(parse_llm_output(raw))

    def build_reply(
        self,
        session: SessionState,
        menu: List[MenuItem],
        user_text: str,
        tenant_config: Optional[TenantConfig] = None,
        dialogue_state: Optional[DialogueState] = None,
    ) -> OrchestrationResult:
        skip = self._skip_evaluation(tenant_config)
        guidance = None if skip else self.evaluator.log.improvement_hint()

        feedback: Optional[str] = None
        last_draft: Optional[Draft] = None
        last_result: Optional[EvaluationResult] = None

        for attempt in range(1, self.max_attempts + 1):
            messages = build_messages(
                session,
                menu,
                user_text,
                tenant_config=tenant_config,
                dialogue_state=dialogue_state,
                feedback=feedback,
                guidance=guidance,
            )
            try:
                draft = self._draft(messages)
            except TransientUpstreamError as e:
                logger.warning("Draft attempt %d/%d failed: %s", attempt, self.max_attempts, e)
                continue

            last_draft = draft
            if skip:
                return OrchestrationResult(draft=draft, attempts=attempt)

            result = self.evaluator.check(
                draft,
                session,
                menu,
                user_text=user_text,
                attempt=attempt,
                dialogue_state=dialogue_state,
            )
            last_result = result
            if result.passed:
                return OrchestrationResult(draft=draft, evaluation=result, attempts=attempt)

            if result.suggestion:
                logger.info("Using evaluator suggestion as reply (attempt %d)", attempt)
                last_draft = draft.model_copy(update={"reply_text": result.suggestion})
            feedback = result.feedback

        if last_draft is None:
            logger.error("LLM unavailable after %d attempts; returning apology", self.max_attempts)
            return OrchestrationResult(
                draft=Draft(reply_text=APOLOGY_REPLY, intent="error"),
                attempts=self.max_attempts,
                failed=True,
            )

        logger.warning("Draft did not pass evaluation after %d attempts; using last draft", self.max_attempts)
        return OrchestrationResult(draft=last_draft, evaluation=last_result, attempts=self.max_attempts)
