"""Persisted state records for upstream credentials and inbound tokens.

Records are stored under a stable hash of the secret, never the secret
itself. Each record carries a schema version; anything that does not
validate against the current schema is treated as absent.
"""

import hashlib
from dataclasses import dataclass
from datetime import datetime
from typing import Any

SCHEMA_VERSION = 1

CREDENTIAL_NAMESPACE = "key"
TOKEN_NAMESPACE = "tok"


def state_key(namespace: str, secret: str) -> str:
    """Derive the storage key for a secret.

    blake2b is used only as a stable lookup transform so keys match
    across restarts and platforms.
    """
    digest = hashlib.blake2b(secret.encode("utf-8"), digest_size=8).hexdigest()
    return f"{namespace}_{digest}"


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass
class CredentialState:
    failed_at: float | None = None  # epoch seconds
    retry_count: int = 0
    dead: bool = False

    def to_item(self) -> dict:
        return {
            "version": SCHEMA_VERSION,
            "failed_at": self.failed_at,
            "retry_count": self.retry_count,
            "dead": self.dead,
        }

    @classmethod
    def from_item(cls, item: Any) -> "CredentialState | None":
        if not isinstance(item, dict) or item.get("version") != SCHEMA_VERSION:
            return None
        failed_at = item.get("failed_at")
        retry_count = item.get("retry_count")
        dead = item.get("dead")
        if failed_at is not None and not _is_number(failed_at):
            return None
        if not _is_int(retry_count) or retry_count < 0 or not isinstance(dead, bool):
            return None
        return cls(
            failed_at=float(failed_at) if failed_at is not None else None,
            retry_count=retry_count,
            dead=dead,
        )


@dataclass
class TokenState:
    last_used_at: datetime | None = None
    usage_count: int = 0
    active: bool = True

    def to_item(self) -> dict:
        return {
            "version": SCHEMA_VERSION,
            "last_used_at": self.last_used_at.isoformat() if self.last_used_at else None,
            "usage_count": self.usage_count,
            "active": self.active,
        }

    @classmethod
    def from_item(cls, item: Any) -> "TokenState | None":
        if not isinstance(item, dict) or item.get("version") != SCHEMA_VERSION:
            return None
        raw_last_used = item.get("last_used_at")
        usage_count = item.get("usage_count")
        active = item.get("active")
        if not _is_int(usage_count) or usage_count < 0 or not isinstance(active, bool):
            return None

        last_used_at = None
        if raw_last_used is not None:
            if not isinstance(raw_last_used, str):
                return None
            try:
                last_used_at = datetime.fromisoformat(raw_last_used)
            except ValueError:
                return None

        return cls(last_used_at=last_used_at, usage_count=usage_count, active=active)
