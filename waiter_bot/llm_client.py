import json
import logging
import os
import re
from typing import Any, Dict, List, Optional

from openai import OpenAI, OpenAIError

from .config import LLM_MAX_TOKENS, LLM_TEMPERATURE, LLM_TIMEOUT_SECONDS, OPENAI_MODEL
from .errors import TransientUpstreamError
from .schemas import Draft, DraftItem, LLMOutput, PlainTextOutput, StructuredOutput

logger = logging.getLogger(__name__)

# ```json ... ``` wrappers some models add despite json_object mode
_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


def get_openai_client(timeout: float = LLM_TIMEOUT_SECONDS) -> OpenAI:
    """Build an OpenAI client from OPENAI_API_KEY. Retries are ours, not the SDK's."""
    api_key = os.getenv("OPENAI_API_KEY")
    logger.debug("OpenAI API key configured: %s", "Yes" if api_key else "No")
    if not api_key:
        raise RuntimeError(
            "OPENAI_API_KEY not set. Create a .env file with OPENAI_API_KEY=sk-... at the project root."
        )
    return OpenAI(api_key=api_key, timeout=timeout, max_retries=0)


class LLMClient:
    """
    Thin wrapper over OpenAI chat completions.

    `complete` returns the raw text of the first choice. Every SDK failure
    (timeout, connection, rate limit, 5xx) is raised as TransientUpstreamError
    so the orchestrator can count it as a failed attempt.
    """

    def __init__(
        self,
        client: Optional[OpenAI] = None,
        model: str = OPENAI_MODEL,
        temperature: float = LLM_TEMPERATURE,
        max_tokens: int = LLM_MAX_TOKENS,
        timeout: float = LLM_TIMEOUT_SECONDS,
    ):
        self._client = client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = get_openai_client(self.timeout)
        return self._client

    def complete(self, messages: List[Dict[str, str]], **params: Any) -> str:
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "response_format": {"type": "json_object"},
            "timeout": self.timeout,
        }
        kwargs.update(params)

        try:
            completion = self.client.chat.completions.create(**kwargs)
        except OpenAIError as e:
            logger.warning("LLM call failed (%s): %s", type(e).__name__, e)
            raise TransientUpstreamError(f"LLM unavailable: {type(e).__name__}") from e

        content = completion.choices[0].message.content or ""
        logger.debug("LLM raw output: %s", content)
        return content


# =============================================================================
# Output parsing
# =============================================================================

def parse_llm_output(text: str) -> LLMOutput:
    """
    Tag raw model text as StructuredOutput (a JSON object) or PlainTextOutput.

    Never raises: anything that is not a JSON object is kept as plain text.
    """
    stripped = (text or "").strip()
    fenced = _FENCE_RE.match(stripped)
    candidate = fenced.group(1) if fenced else stripped

    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        logger.info("LLM returned non-JSON output; treating it as plain text")
        return PlainTextOutput(text=stripped)

    if isinstance(parsed, dict):
        return StructuredOutput(fields=parsed)
    return PlainTextOutput(text=stripped)


def _draft_items(raw_items: Any) -> List[DraftItem]:
    items: List[DraftItem] = []
    if not isinstance(raw_items, list):
        return items
    for raw in raw_items:
        if isinstance(raw, str):
            items.append(DraftItem(name=raw))
            continue
        if not isinstance(raw, dict):
            continue
        name = raw.get("name") or raw.get("title") or raw.get("item")
        if not name:
            continue
        try:
            qty = int(raw.get("quantity", raw.get("qty", 1)))
        except (TypeError, ValueError):
            qty = 1
        items.append(DraftItem(name=str(name), quantity=max(1, qty)))
    return items


def draft_from_output(output: LLMOutput) -> Draft:
    """Turn a tagged LLM output into a Draft. Plain text becomes intent 'unknown'."""
    if isinstance(output, PlainTextOutput):
        return Draft(reply_text=output.text, intent="unknown")

    fields = output.fields
    reply = fields.get("reply_text") or fields.get("reply") or ""
    return Draft(
        reply_text=reply if isinstance(reply, str) else str(reply),
        intent=str(fields.get("intent") or "unknown"),
        order_items=_draft_items(fields.get("order_items", fields.get("orderItems"))),
    )
