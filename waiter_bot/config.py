"""
Configuration Module for Waiter Bot
===================================

All environment variables, defaults and tunables used by the waiter bot live
here. Values are parsed and typed once at import time; a `.env` file at the
project root is loaded first so local development does not need exported
variables.

Configuration Categories:
-------------------------
- **Persistence**: Database URL for session and order storage.

- **Session Management**: Inactivity TTL, sweep cadence, in-memory cache size
  and optimistic-write retry budget for the session store.

- **Conversation Window**: How much history is kept on the session and how
  much of it is replayed into the LLM prompt.

- **Input Validation**: Maximum inbound message length.

- **LLM**: Model names, fixed sampling temperature, token budget, per-call
  timeout and the number of draft attempts before giving up.

- **Presentation**: Currency prefix used in templated replies.

Environment Variables:
----------------------
- DATABASE_URL: SQLAlchemy URL (default: "sqlite:///./waiter_bot.db")
- SESSION_TTL_SECONDS: Inactivity timeout for a session (default: 600)
- SESSION_SWEEP_INTERVAL_SECONDS: Background sweep cadence (default: 300)
- SESSION_MAX_CACHE_SIZE: Max sessions held in memory (default: 1000)
- SESSION_SAVE_RETRIES: Optimistic write retries per save (default: 3)
- HISTORY_MAX_MESSAGES: Messages kept on a session (default: 16)
- PROMPT_HISTORY_MESSAGES: Messages replayed into the prompt (default: 10)
- MAX_MESSAGE_LENGTH: Max inbound message length (default: 2000)
- OPENAI_MODEL: Drafting model (default: "gpt-4o-mini")
- EVALUATION_MODEL: Judge model (default: "gpt-4o-mini")
- LLM_TEMPERATURE: Sampling temperature, fixed across retries (default: 0.3)
- LLM_MAX_TOKENS: Completion token cap (default: 600)
- LLM_TIMEOUT_SECONDS: Per-call timeout (default: 20)
- LLM_MAX_ATTEMPTS: Draft attempts per turn (default: 2)
- SKIP_EVALUATION: Bypass the evaluator entirely (default: "false")
- CURRENCY_PREFIX: Currency label for templated replies (default: "Rs.")

Usage:
------
    from waiter_bot.config import SESSION_TTL_SECONDS, LLM_MAX_ATTEMPTS
"""

import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# =============================================================================
# Persistence
# =============================================================================

DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./waiter_bot.db")


# =============================================================================
# Session Management
# =============================================================================
# A session is dropped after SESSION_TTL_SECONDS without a message. The sweeper
# thread checks every SESSION_SWEEP_INTERVAL_SECONDS.

SESSION_TTL_SECONDS: int = int(os.getenv("SESSION_TTL_SECONDS", "600"))

SESSION_SWEEP_INTERVAL_SECONDS: int = int(os.getenv("SESSION_SWEEP_INTERVAL_SECONDS", "300"))

SESSION_MAX_CACHE_SIZE: int = int(os.getenv("SESSION_MAX_CACHE_SIZE", "1000"))

# Bounded retries when another writer bumped the row version underneath us
SESSION_SAVE_RETRIES: int = int(os.getenv("SESSION_SAVE_RETRIES", "3"))


# =============================================================================
# Conversation Window
# =============================================================================

HISTORY_MAX_MESSAGES: int = int(os.getenv("HISTORY_MAX_MESSAGES", "16"))

PROMPT_HISTORY_MESSAGES: int = int(os.getenv("PROMPT_HISTORY_MESSAGES", "10"))


# =============================================================================
# Input Validation
# =============================================================================

MAX_MESSAGE_LENGTH: int = int(os.getenv("MAX_MESSAGE_LENGTH", "2000"))


# =============================================================================
# LLM
# =============================================================================

OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")

EVALUATION_MODEL: str = os.getenv("EVALUATION_MODEL", "gpt-4o-mini")

# Held constant across retries; retries are steered by evaluator feedback instead
LLM_TEMPERATURE: float = float(os.getenv("LLM_TEMPERATURE", "0.3"))

LLM_MAX_TOKENS: int = int(os.getenv("LLM_MAX_TOKENS", "600"))

LLM_TIMEOUT_SECONDS: float = float(os.getenv("LLM_TIMEOUT_SECONDS", "20"))

LLM_MAX_ATTEMPTS: int = int(os.getenv("LLM_MAX_ATTEMPTS", "2"))

SKIP_EVALUATION: bool = _env_bool("SKIP_EVALUATION")


# =============================================================================
# Presentation
# =============================================================================

CURRENCY_PREFIX: str = os.getenv("CURRENCY_PREFIX", "Rs.")
