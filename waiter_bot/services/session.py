"""
Session Store for Waiter Bot
============================

Sessions are keyed by (tenant, user) and persisted in the `chat_sessions`
table, with a write-through in-memory cache in front for active
conversations.

Write Path:
-----------
Every change to a session goes through `SessionStore.save(key, mutator)`:
1. Take the in-process lock for the key (one writer per key per process;
   the lock is re-entrant, so a whole turn can hold it via `lock(key)`, and
   is dropped once no thread holds or waits on it)
2. Read the latest row from the database
3. Apply `mutator(state)` to it
4. Write it back only if the row version is still the one we read
5. On a version clash (another process won the race) re-read and re-apply

Mutators must therefore be safe to call more than once on fresh state. The
message pipeline records each turn as a list of operations and replays them,
which satisfies this.

Read Path:
----------
`load(key)` never fails the caller. A missing, expired or unreadable record
comes back as a fresh empty session; the damaged row is overwritten on the
next save.

Expiry:
-------
A session idle for longer than SESSION_TTL_SECONDS is treated as gone.
`sweep_expired()` deletes such rows; `SessionSweeper` calls it periodically on
a daemon thread so request handling never waits on it.

Multi-instance deployments:
---------------------------
The cache is per process. Writes are always checked against the database, but
reads may be briefly stale across processes. Set SESSION_MAX_CACHE_SIZE=0 to
read straight from the database.

Usage:
------
    from waiter_bot.services.session import SessionStore, make_session_key

    store = SessionStore(session_factory)
    key = make_session_key("pizza-palace", "+91 98765 43210")
    state = store.load(key)
    store.save(key, lambda s: s.cart.clear())
"""

import logging
import re
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Optional

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..config import (
    SESSION_MAX_CACHE_SIZE,
    SESSION_SAVE_RETRIES,
    SESSION_SWEEP_INTERVAL_SECONDS,
    SESSION_TTL_SECONDS,
)
from ..errors import SessionConflictError
from ..models import ChatSession
from ..schemas import SessionState


logger = logging.getLogger(__name__)

# Phone-number style ids: digits with optional +, spaces, dashes, parens
_PHONE_RE = re.compile(r"^\+?[\d\s\-().]{6,}$")


# =============================================================================
# Session Keys
# =============================================================================

def make_session_key(tenant_id: str, user_id: str) -> str:
    """
    Build the composite storage key for a (tenant, user) pair.

    Phone numbers are reduced to digits so "+91 98765-43210" and "919876543210"
    land in the same session.
    """
    tenant = tenant_id.strip().lower()
    user = user_id.strip()
    if _PHONE_RE.match(user):
        user = re.sub(r"\D", "", user)
    return f"{tenant}:{user}"


def parse_session_key(key: str) -> tuple[str, str]:
    tenant, _, user = key.partition(":")
    return tenant, user


class _KeyLock:
    """Re-entrant lock plus a count of threads holding or waiting on it."""

    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0


# =============================================================================
# SessionStore
# =============================================================================

class SessionStore:
    """Keyed, TTL-bounded session storage with serialized writes per key."""

    def __init__(
        self,
        session_factory: sessionmaker,
        ttl_seconds: int = SESSION_TTL_SECONDS,
        max_cache_size: int = SESSION_MAX_CACHE_SIZE,
        save_retries: int = SESSION_SAVE_RETRIES,
        clock: Callable[[], float] = time.time,
    ):
        self._session_factory = session_factory
        self.ttl_seconds = ttl_seconds
        self.max_cache_size = max_cache_size
        self.save_retries = max(1, save_retries)
        self._clock = clock

        # {key: {"state": SessionState, "last_access": timestamp}}
        self._cache: Dict[str, Dict[str, Any]] = {}
        self._cache_lock = threading.Lock()

        self._key_locks: Dict[str, _KeyLock] = {}
        self._key_locks_guard = threading.Lock()

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    @contextmanager
    def _locked(self, key: str) -> Iterator[None]:
        """
        Hold the per-key lock. The entry lives while any thread holds or waits
        on it and is dropped by the last one out.
        """
        with self._key_locks_guard:
            entry = self._key_locks.get(key)
            if entry is None:
                entry = _KeyLock()
                self._key_locks[key] = entry
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._key_locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._key_locks[key]

    def _fresh_state(self, key: str, now: float) -> SessionState:
        tenant_id, user_id = parse_session_key(key)
        return SessionState(tenant_id=tenant_id, user_id=user_id, last_active=now)

    def _is_expired(self, last_active: float, now: float) -> bool:
        return now - last_active > self.ttl_seconds

    def _state_from_row(self, key: str, row: Optional[ChatSession], now: float) -> SessionState:
        if row is None:
            return self._fresh_state(key, now)

        if self._is_expired(row.last_active or 0.0, now):
            logger.info("Session %s expired, starting fresh", key)
            return self._fresh_state(key, now)

        try:
            state = SessionState.model_validate(row.data)
        except ValidationError as e:
            logger.warning("Session %s has an unreadable record, starting fresh: %s", key, e)
            return self._fresh_state(key, now)

        state.version = row.version
        return state

    def _cache_get(self, key: str, now: float) -> Optional[SessionState]:
        if self.max_cache_size <= 0:
            return None
        with self._cache_lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            if self._is_expired(entry["state"].last_active, now):
                del self._cache[key]
                return None
            entry["last_access"] = now
            return entry["state"].model_copy(deep=True)

    def _cache_put(self, key: str, state: SessionState, now: float) -> None:
        if self.max_cache_size <= 0:
            return
        with self._cache_lock:
            if len(self._cache) >= self.max_cache_size and key not in self._cache:
                self._evict_oldest(max(1, self.max_cache_size // 10))
            self._cache[key] = {
                "state": state.model_copy(deep=True),
                "last_access": now,
            }

    def _evict_oldest(self, count: int) -> None:
        # Caller holds _cache_lock
        oldest = sorted(self._cache.items(), key=lambda x: x[1]["last_access"])[:count]
        for key, _ in oldest:
            del self._cache[key]
        logger.debug("Evicted %d oldest sessions from cache", len(oldest))

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        """
        Hold the per-key lock for a whole turn.

        The lock is re-entrant, so `save` and `delete` may be called inside.
        """
        with self._locked(key):
            yield

    def load(self, key: str) -> SessionState:
        """
        Return the current session for `key`, or a fresh one.

        The returned object is a copy; changing it does not change storage.
        """
        now = self._clock()

        cached = self._cache_get(key, now)
        if cached is not None:
            return cached

        db = self._session_factory()
        try:
            row = db.query(ChatSession).filter(ChatSession.session_key == key).first()
            state = self._state_from_row(key, row, now)
        finally:
            db.close()

        if row is not None and state.version == row.version:
            self._cache_put(key, state, now)
        return state

    def save(self, key: str, mutator: Callable[[SessionState], None]) -> SessionState:
        """
        Atomically apply `mutator` to the latest state for `key` and persist it.

        Returns a copy of the saved state. Raises SessionConflictError if every
        retry lost to a concurrent writer. If `mutator` raises, nothing is
        written and the exception propagates.
        """
        with self._locked(key):
            for attempt in range(1, self.save_retries + 1):
                now = self._clock()
                db = self._session_factory()
                try:
                    row = db.query(ChatSession).filter(ChatSession.session_key == key).first()
                    state = self._state_from_row(key, row, now)
                    base_version = row.version if row is not None else 0

                    mutator(state)
                    state.last_active = now
                    state.version = base_version + 1
                    payload = state.model_dump(mode="json")

                    if row is None:
                        db.add(ChatSession(
                            session_key=key,
                            tenant_id=state.tenant_id,
                            user_id=state.user_id,
                            data=payload,
                            version=state.version,
                            last_active=now,
                        ))
                        try:
                            db.commit()
                        except IntegrityError:
                            # Another process inserted the row first
                            db.rollback()
                            logger.debug("Session %s insert raced, retrying (attempt %d)", key, attempt)
                            continue
                    else:
                        updated = (
                            db.query(ChatSession)
                            .filter(
                                ChatSession.session_key == key,
                                ChatSession.version == base_version,
                            )
                            .update(
                                {
                                    ChatSession.data: payload,
                                    ChatSession.version: state.version,
                                    ChatSession.last_active: now,
                                },
                                synchronize_session=False,
                            )
                        )
                        if updated == 0:
                            db.rollback()
                            logger.debug("Session %s version moved, retrying (attempt %d)", key, attempt)
                            continue
                        db.commit()
                finally:
                    db.close()

                self._cache_put(key, state, now)
                return state.model_copy(deep=True)

        logger.warning("Session %s save gave up after %d attempts", key, self.save_retries)
        raise SessionConflictError(f"Could not save session {key}")

    def delete(self, key: str) -> bool:
        """Remove a session from cache and database. Returns True if a row existed."""
        with self._locked(key):
            with self._cache_lock:
                self._cache.pop(key, None)
            db = self._session_factory()
            try:
                deleted = db.query(ChatSession).filter(ChatSession.session_key == key).delete(
                    synchronize_session=False
                )
                db.commit()
            finally:
                db.close()
        return deleted > 0

    def sweep_expired(self) -> int:
        """
        Delete sessions idle for longer than the TTL.

        Returns:
            int: Number of database rows removed
        """
        now = self._clock()
        cutoff = now - self.ttl_seconds

        with self._cache_lock:
            expired = [k for k, e in self._cache.items() if e["state"].last_active < cutoff]
            for key in expired:
                del self._cache[key]

        db = self._session_factory()
        try:
            removed = db.query(ChatSession).filter(ChatSession.last_active < cutoff).delete(
                synchronize_session=False
            )
            db.commit()
        finally:
            db.close()

        if removed:
            logger.info("Swept %d expired sessions", removed)
        return removed

    def clear_cache(self) -> int:
        """Drop every cached session. Database rows are untouched."""
        with self._cache_lock:
            count = len(self._cache)
            self._cache.clear()
        logger.info("Cleared %d sessions from cache", count)
        return count

    def get_cache_stats(self) -> Dict[str, Any]:
        with self._cache_lock:
            access_times = [entry["last_access"] for entry in self._cache.values()]
            return {
                "size": len(self._cache),
                "max_size": self.max_cache_size,
                "ttl_seconds": self.ttl_seconds,
                "oldest_access": min(access_times) if access_times else None,
                "newest_access": max(access_times) if access_times else None,
            }


# =============================================================================
# Background Sweeper
# =============================================================================

class SessionSweeper:
    """Runs SessionStore.sweep_expired on a daemon thread at a fixed interval."""

    def __init__(self, store: SessionStore, interval_seconds: float = SESSION_SWEEP_INTERVAL_SECONDS):
        self.store = store
        self.interval_seconds = interval_seconds
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="session-sweeper", daemon=True)
        self._thread.start()
        logger.debug("Session sweeper started (every %ss)", self.interval_seconds)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            try:
                self.store.sweep_expired()
            except SQLAlchemyError:
                logger.exception("Session sweep failed")
