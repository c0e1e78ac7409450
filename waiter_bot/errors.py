"""
Error types raised across the waiter bot.

Only InvalidRequestError and UnknownTenantError escape to the caller. Upstream
failures are retried and turned into templated replies, and integrity
violations are repaired in place by post-processing.
"""


class WaiterBotError(Exception):
    """Base class for waiter bot errors."""


class InvalidRequestError(WaiterBotError, ValueError):
    """Inbound message is malformed (missing tenant, user or text)."""


class UnknownTenantError(WaiterBotError, LookupError):
    """No menu is registered for the requested tenant."""

    def __init__(self, tenant_id: str):
        super().__init__(f"Unknown tenant: {tenant_id}")
        self.tenant_id = tenant_id


class TransientUpstreamError(WaiterBotError):
    """The LLM or the order sink is unavailable or timed out."""


class DataIntegrityViolation(WaiterBotError):
    """A drafted reply contradicts the cart or the menu."""


class SessionConflictError(WaiterBotError):
    """Optimistic session write kept losing to concurrent writers."""
