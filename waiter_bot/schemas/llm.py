"""
LLM-facing schemas.

LLMOutput is a tagged union: either the model returned the JSON object we asked
for (StructuredOutput) or it returned something else, which is kept verbatim
as PlainTextOutput. Callers match on the `kind` field rather than catching
parse errors.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field


class StructuredOutput(BaseModel):
    kind: Literal["structured"] = "structured"
    fields: dict[str, Any] = Field(default_factory=dict)


class PlainTextOutput(BaseModel):
    kind: Literal["plain_text"] = "plain_text"
    text: str = ""


LLMOutput = Annotated[Union[StructuredOutput, PlainTextOutput], Field(discriminator="kind")]


class DraftItem(BaseModel):
    """An item the model claims the user wants added."""

    name: str
    quantity: int = 1


class Draft(BaseModel):
    """A candidate reply for the current turn."""

    reply_text: str
    intent: str = "unknown"
    order_items: list[DraftItem] = Field(default_factory=list)


class JudgeVerdict(BaseModel):
    """Structured verdict returned by the LLM judge."""

    passed: bool = Field(description="True only if the reply meets every rubric rule")
    feedback: str = Field(description="Short explanation of what is wrong, or 'ok'")
    suggestion: str | None = Field(
        default=None,
        description="A fully corrected reply for the customer when passed is false",
    )


class EvaluationResult(BaseModel):
    """Outcome of one evaluator pass. Never persisted."""

    passed: bool
    feedback: str = ""
    suggestion: str | None = None
    attempt: int = 1
