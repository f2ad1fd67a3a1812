"""Upstream credential pool with cooldown and retirement.

Credentials are kept in configuration order with a sticky rotation
cursor. A quota-class failure puts the failing credential into cooldown
and bumps its retry count; once the count reaches ``max_retries`` the
credential is dead until ``reset()``. Cooldown recovery clears
``failed_at`` but never the retry count, so a credential that keeps
failing each cycle eventually dies.

Reads (``active_credential``, ``status``) are synchronous. Mutations
persist the touched credential after the in-memory change.
"""

import logging
import time
from dataclasses import dataclass

from src.state.models import CredentialState
from src.state.persistence import StatePersistence

logger = logging.getLogger("gateway.pool")

DEFAULT_COOLDOWN_SECONDS = 180.0
DEFAULT_MAX_RETRIES = 3


@dataclass
class Credential:
    secret: str
    failed_at: float | None = None
    retry_count: int = 0
    dead: bool = False

    def __repr__(self) -> str:
        # Keep the secret out of tracebacks and debug output
        return (
            f"Credential(failed_at={self.failed_at!r}, "
            f"retry_count={self.retry_count}, dead={self.dead})"
        )

    def to_state(self) -> CredentialState:
        return CredentialState(
            failed_at=self.failed_at, retry_count=self.retry_count, dead=self.dead
        )


@dataclass
class PoolStatus:
    total: int
    active: int
    cooldown: int
    dead: int

    def as_dict(self) -> dict:
        return {
            "total": self.total,
            "active": self.active,
            "cooldown": self.cooldown,
            "dead": self.dead,
        }


class CredentialPool:
    def __init__(
        self,
        secrets: list[str],
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        persistence: StatePersistence | None = None,
    ):
        self._credentials = [Credential(secret=s) for s in secrets]
        self._cursor = 0
        self.cooldown_seconds = cooldown_seconds
        self.max_retries = max_retries
        self._persistence = persistence or StatePersistence(None)

    def __len__(self) -> int:
        return len(self._credentials)

    @property
    def cursor(self) -> int:
        return self._cursor

    async def load_state(self) -> None:
        """Restore failure counters saved by a previous process."""
        restored = 0
        for credential in self._credentials:
            state = await self._persistence.load_credential(credential.secret)
            if state is None:
                continue
            credential.failed_at = state.failed_at
            credential.retry_count = state.retry_count
            credential.dead = state.dead
            restored += 1

        if restored:
            logger.info(
                "Restored credential state",
                extra={"audit_data": {"restored": restored, **self.status().as_dict()}},
            )

    def _in_cooldown(self, credential: Credential, now: float) -> bool:
        return credential.failed_at is not None and now - credential.failed_at < self.cooldown_seconds

    def _is_available(self, credential: Credential, now: float) -> bool:
        return not credential.dead and not self._in_cooldown(credential, now)

    def _label(self, index: int) -> str:
        return f"{index + 1}/{len(self._credentials)}"

    def active_credential(self) -> str | None:
        """Return the first usable credential at or after the cursor.

        The cursor is left alone when its credential is usable. When it has
        to skip unusable ones, the cursor settles on the credential handed
        out, so a later failure report targets the right one.
        """
        if not self._credentials:
            return None

        now = time.time()
        size = len(self._credentials)
        for offset in range(size):
            index = (self._cursor + offset) % size
            credential = self._credentials[index]
            if not self._is_available(credential, now):
                continue
            if credential.failed_at is not None:
                # Cooldown elapsed; retry_count keeps accumulating until dead
                credential.failed_at = None
                logger.info(
                    "Credential recovered from cooldown",
                    extra={"audit_data": {"key": self._label(index)}},
                )
            self._cursor = index
            return credential.secret

        logger.warning(
            "All credentials exhausted or in cooldown",
            extra={"audit_data": self.status().as_dict()},
        )
        return None

    def _index_of(self, secret: str) -> int | None:
        for index, credential in enumerate(self._credentials):
            if credential.secret == secret:
                return index
        return None

    async def record_failure(self, reason: str, secret: str | None = None) -> bool:
        """Record a quota-class failure and rotate.

        Marks the credential at the cursor, or the one matching ``secret``
        when the caller knows which credential it used. Returns True if a
        usable credential is now at the cursor, False if the pool is
        exhausted.
        """
        if not self._credentials:
            return False

        index = self._index_of(secret) if secret is not None else None
        if index is None:
            index = self._cursor

        credential = self._credentials[index]
        credential.failed_at = time.time()
        credential.retry_count += 1
        if credential.retry_count >= self.max_retries:
            credential.dead = True

        logger.warning(
            "Credential failed",
            extra={"audit_data": {
                "key": self._label(index),
                "attempt": credential.retry_count,
                "max_retries": self.max_retries,
                "dead": credential.dead,
                "reason": reason,
            }},
        )

        await self._persistence.save_credential(credential.secret, credential.to_state())

        if index != self._cursor and self._is_available(self._credentials[self._cursor], time.time()):
            # A concurrent request already rotated past the failed credential
            return True
        return self.rotate()

    def rotate(self) -> bool:
        """Advance the cursor to the next usable credential.

        Returns False after a full lap without finding one; the cursor is
        then back where it started.
        """
        if not self._credentials:
            return False

        now = time.time()
        size = len(self._credentials)
        start = self._cursor
        while True:
            self._cursor = (self._cursor + 1) % size
            if self._is_available(self._credentials[self._cursor], now):
                logger.info(
                    "Rotated credential",
                    extra={"audit_data": {"key": self._label(self._cursor)}},
                )
                return True
            if self._cursor == start:
                return False

    def status(self) -> PoolStatus:
        now = time.time()
        active = cooldown = dead = 0
        for credential in self._credentials:
            if credential.dead:
                dead += 1
            elif self._in_cooldown(credential, now):
                cooldown += 1
            else:
                active += 1
        return PoolStatus(total=len(self._credentials), active=active, cooldown=cooldown, dead=dead)

    async def reset(self) -> None:
        """Clear all failure state. Administrative recovery only."""
        for credential in self._credentials:
            credential.failed_at = None
            credential.retry_count = 0
            credential.dead = False
            await self._persistence.save_credential(credential.secret, credential.to_state())
        self._cursor = 0
        logger.info("All credentials reset", extra={"audit_data": self.status().as_dict()})
