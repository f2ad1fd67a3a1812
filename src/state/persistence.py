"""Namespaced, failure-tolerant access to the state store.

The pool and the registry persist through this wrapper only. In-memory
state is authoritative; the store is advisory history. A store error
suspends persistence for ``retry_after`` seconds and logs one warning per
outage; the next call after that window tries the store again.
"""

import logging
import time

from src.state.models import (
    CREDENTIAL_NAMESPACE,
    TOKEN_NAMESPACE,
    CredentialState,
    TokenState,
    state_key,
)
from src.state.store import StateStore

logger = logging.getLogger("gateway.state")

DEFAULT_RETRY_AFTER_SECONDS = 30.0


class StatePersistence:
    def __init__(self, store: StateStore | None, retry_after: float = DEFAULT_RETRY_AFTER_SECONDS):
        self._store = store
        self._retry_after = retry_after
        self._suspended_until: float | None = None
        self._degraded = False

    @property
    def enabled(self) -> bool:
        if self._store is None:
            return False
        return self._suspended_until is None or time.monotonic() >= self._suspended_until

    @property
    def degraded(self) -> bool:
        """True from the first store error until a store call succeeds again."""
        return self._degraded

    def _suspend(self, operation: str, error: Exception) -> None:
        self._suspended_until = time.monotonic() + self._retry_after
        if self._degraded:
            logger.debug(
                "State store still unavailable",
                extra={"audit_data": {"operation": operation, "error": type(error).__name__}},
            )
            return

        self._degraded = True
        logger.warning(
            "State store unavailable, continuing with in-memory state",
            extra={"audit_data": {
                "operation": operation,
                "error": type(error).__name__,
                "retry_after_seconds": self._retry_after,
            }},
        )

    def _recovered(self) -> None:
        self._suspended_until = None
        if self._degraded:
            self._degraded = False
            logger.info("State store reachable again")

    async def _get(self, key: str) -> dict | None:
        if not self.enabled:
            return None
        try:
            record = await self._store.get(key)
        except Exception as e:  # any backend failure falls back to memory-only
            self._suspend("get", e)
            return None
        self._recovered()
        return record

    async def _put(self, key: str, record: dict) -> None:
        if not self.enabled:
            return
        try:
            await self._store.put(key, record)
        except Exception as e:  # any backend failure falls back to memory-only
            self._suspend("put", e)
            return
        self._recovered()

    async def load_credential(self, secret: str) -> CredentialState | None:
        return CredentialState.from_item(await self._get(state_key(CREDENTIAL_NAMESPACE, secret)))

    async def save_credential(self, secret: str, state: CredentialState) -> None:
        await self._put(state_key(CREDENTIAL_NAMESPACE, secret), state.to_item())

    async def load_token(self, value: str) -> TokenState | None:
        return TokenState.from_item(await self._get(state_key(TOKEN_NAMESPACE, value)))

    async def save_token(self, value: str, state: TokenState) -> None:
        await self._put(state_key(TOKEN_NAMESPACE, value), state.to_item())
