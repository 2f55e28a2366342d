"""
Session Store Module
====================

In-memory mapping from opaque session token to session record.

The store does not decide whether a session is valid; callers pass the
provider's policy in. A session present in the store may already be expired,
and the periodic sweep is only a best-effort reclaimer.
"""

import asyncio
import logging
import secrets
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from ..models import Identity, Session

logger = logging.getLogger(__name__)

SessionPredicate = Callable[[Session], bool]
Clock = Callable[[], datetime]

TOKEN_BYTES = 32
DEFAULT_SWEEP_INTERVAL_SECONDS = 30 * 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_session_token() -> str:
    """Return a URL-safe token with 256 bits from the OS CSPRNG."""
    return secrets.token_urlsafe(TOKEN_BYTES)


class SessionStore:
    """
    Owns every live session.

    Mutations are serialized by an asyncio lock; ``get`` reads without it.

    Attributes:
        clock: Source of the current time (injectable for tests)
    """

    def __init__(self, clock: Optional[Clock] = None):
        self.clock: Clock = clock or _utcnow
        self._sessions: Dict[str, Session] = {}
        self._lock = asyncio.Lock()
        self._sweep_task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._sessions)

    def now(self) -> datetime:
        return self.clock()

    # =========================================================================
    # Session Operations
    # =========================================================================

    async def create(self, identity: Identity) -> str:
        """
        Store a new session for ``identity``.

        Args:
            identity: Authenticated caller

        Returns:
            The new session token
        """
        async with self._lock:
            token = generate_session_token()
            while token in self._sessions:
                token = generate_session_token()

            now = self.now()
            self._sessions[token] = Session(
                token=token,
                created_at=now,
                last_accessed_at=now,
                identity=identity,
            )

        logger.debug(
            "Created session",
            extra={"user_id": identity.id, "active_sessions": len(self._sessions)},
        )
        return token

    def get(self, token: Optional[str]) -> Optional[Session]:
        """Look up a session without changing it."""
        if not token:
            return None
        return self._sessions.get(token)

    async def touch(self, token: str) -> None:
        """
        Record activity on a session that has just been validated.

        Does nothing if the session was removed in the meantime.
        """
        async with self._lock:
            session = self._sessions.get(token)
            if session is not None:
                session.last_accessed_at = max(self.now(), session.created_at)

    async def remove(self, token: Optional[str]) -> None:
        """Delete a session. Removing an unknown token is a no-op."""
        if not token:
            return
        async with self._lock:
            self._sessions.pop(token, None)

    async def sweep(self, is_valid: SessionPredicate) -> int:
        """
        Remove every session for which ``is_valid`` returns False.

        The predicate is evaluated against a snapshot so the lock is not held
        while iterating a large store. A candidate touched after the snapshot
        is re-checked under the lock before removal, so a concurrent ``touch``
        is never discarded; untouched candidates are evaluated only once.

        Args:
            is_valid: Validity policy

        Returns:
            Number of sessions removed
        """
        async with self._lock:
            snapshot = [
                (token, session.last_accessed_at, session)
                for token, session in self._sessions.items()
            ]

        candidates: List[Tuple[str, datetime]] = [
            (token, last_accessed_at)
            for token, last_accessed_at, session in snapshot
            if not is_valid(session)
        ]
        if not candidates:
            return 0

        removed = 0
        async with self._lock:
            for token, last_accessed_at in candidates:
                session = self._sessions.get(token)
                if session is None:
                    continue
                if session.last_accessed_at != last_accessed_at and is_valid(session):
                    continue
                del self._sessions[token]
                removed += 1

        return removed

    # =========================================================================
    # Background Sweep
    # =========================================================================

    def start(
        self,
        is_valid: SessionPredicate,
        interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        """
        Start the periodic sweep on the running event loop.

        Args:
            is_valid: Validity policy passed to each sweep
            interval_seconds: Delay between sweeps
        """
        if self._sweep_task is not None and not self._sweep_task.done():
            return

        self._sweep_task = asyncio.create_task(
            self._sweep_loop(is_valid, interval_seconds),
            name="session-sweep",
        )
        logger.info(
            "Started session sweeper",
            extra={"interval_seconds": interval_seconds},
        )

    async def _sweep_loop(self, is_valid: SessionPredicate, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                removed = await self.sweep(is_valid)
            except Exception as e:
                logger.error(f"Session sweep failed: {e}", exc_info=True)
                continue

            if removed:
                logger.info(
                    f"Swept {removed} expired sessions",
                    extra={"removed": removed, "active_sessions": len(self._sessions)},
                )

    async def shutdown(self) -> None:
        """Stop the sweeper and drop every session."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

        async with self._lock:
            dropped = len(self._sessions)
            self._sessions.clear()

        logger.info("Session store shut down", extra={"dropped_sessions": dropped})

    @property
    def sweeper_running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()
