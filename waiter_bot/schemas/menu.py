"""
Menu schemas.

A tenant's menu is a read-only snapshot owned by the MenuProvider. The core
resolves user phrases against it and pins prices from it, but never edits it.
"""

from pydantic import BaseModel, Field


class MenuItem(BaseModel):
    """A single orderable item on a tenant's menu."""

    item_id: str
    title: str
    price: float = Field(ge=0)
    tags: list[str] = Field(default_factory=list)  # category words: "burger", "sides", "main"
    aliases: list[str] = Field(default_factory=list)  # alternate names users type
    description: str | None = None
    available: bool = True  # sold-out items stay listed in storage but are hidden from the bot


class TenantConfig(BaseModel):
    """Per-tenant knobs that do not belong on the menu."""

    tenant_id: str
    name: str = "our restaurant"
    # None means follow the global SKIP_EVALUATION setting
    skip_evaluation: bool | None = None
    # Fast-path intents this tenant wants sent to the LLM instead
    disabled_fast_intents: list[str] = Field(default_factory=list)
