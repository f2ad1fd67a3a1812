"""Inbound token registry.

Holds every accepted inbound token with its role, owner, expiry and usage
counters. An empty registry means authentication is disabled
(passthrough mode), not that every request is denied.

Presented values are compared against every stored token with
``hmac.compare_digest`` on UTF-8 bytes, iterating the full set even after
a match, so response timing does not reveal a correct prefix.
"""

import hmac
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from src.logging.audit import mask_secret
from src.state.models import TokenState
from src.state.persistence import StatePersistence
from src.tokens.config import TokenRole, TokenSpec

logger = logging.getLogger("gateway.tokens")

_BEARER_RE = re.compile(r"^Bearer\s+(.+)$", re.IGNORECASE)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InvalidReason(str, Enum):
    MISSING_TOKEN = "missing_token"
    MALFORMED_HEADER = "malformed_header"
    NOT_FOUND = "token_not_found"
    DISABLED = "token_disabled"
    EXPIRED = "token_expired"


@dataclass
class TokenInfo:
    value: str
    owner_id: str | None
    role: TokenRole
    expires_at: datetime | None = None
    active: bool = True
    created_at: datetime = field(default_factory=_utcnow)
    last_used_at: datetime | None = None
    usage_count: int = 0

    def __repr__(self) -> str:
        return (
            f"TokenInfo(value={mask_secret(self.value)!r}, owner_id={self.owner_id!r}, "
            f"role={self.role.value!r}, active={self.active})"
        )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def to_state(self) -> TokenState:
        return TokenState(
            last_used_at=self.last_used_at, usage_count=self.usage_count, active=self.active
        )

    def public_view(self, now: datetime) -> dict:
        """Everything about the token except its value."""
        return {
            "token_prefix": mask_secret(self.value),
            "owner_id": self.owner_id,
            "role": self.role.value,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "is_active": self.active,
            "is_expired": self.is_expired(now),
            "created_at": self.created_at.isoformat(),
            "usage_count": self.usage_count,
            "last_used_at": self.last_used_at.isoformat() if self.last_used_at else None,
        }


@dataclass
class ValidationResult:
    valid: bool
    token: TokenInfo | None = None
    reason: InvalidReason | None = None

    @classmethod
    def ok(cls, token: TokenInfo | None) -> "ValidationResult":
        return cls(valid=True, token=token)

    @classmethod
    def invalid(cls, reason: InvalidReason, token: TokenInfo | None = None) -> "ValidationResult":
        return cls(valid=False, token=token, reason=reason)


@dataclass
class TokenStats:
    total_tokens: int
    active_tokens: int
    expired_tokens: int
    total_usage: int
    usage_by_owner: dict[str, int]
    tokens_by_owner: dict[str, int]

    def as_dict(self) -> dict:
        return {
            "total_tokens": self.total_tokens,
            "active_tokens": self.active_tokens,
            "expired_tokens": self.expired_tokens,
            "total_usage": self.total_usage,
            "usage_by_owner": dict(self.usage_by_owner),
            "tokens_by_owner": dict(self.tokens_by_owner),
        }


def extract_bearer(header: str | None) -> tuple[str | None, InvalidReason | None]:
    """Pull the token out of an Authorization header value."""
    if not header:
        return None, InvalidReason.MISSING_TOKEN
    match = _BEARER_RE.match(header.strip())
    if not match:
        return None, InvalidReason.MALFORMED_HEADER
    return match.group(1).strip(), None


class TokenRegistry:
    def __init__(self, specs: list[TokenSpec], persistence: StatePersistence | None = None):
        self._tokens: dict[str, TokenInfo] = {}
        for spec in specs:
            # Last entry wins for duplicate values
            self._tokens[spec.token] = TokenInfo(
                value=spec.token,
                owner_id=spec.owner_id,
                role=spec.role,
                expires_at=spec.expires_at,
            )
        self._persistence = persistence or StatePersistence(None)

    def __len__(self) -> int:
        return len(self._tokens)

    def is_auth_required(self) -> bool:
        return bool(self._tokens)

    async def load_state(self) -> None:
        """Restore usage counters and active flags saved by a previous process."""
        restored = 0
        for info in self._tokens.values():
            state = await self._persistence.load_token(info.value)
            if state is None:
                continue
            info.last_used_at = state.last_used_at
            info.usage_count = state.usage_count
            info.active = state.active
            restored += 1

        if restored:
            logger.info("Restored token state", extra={"audit_data": {"restored": restored}})

    def _match(self, presented: str) -> TokenInfo | None:
        """Constant-time lookup across all tokens."""
        presented_bytes = presented.encode("utf-8", errors="surrogatepass")
        match: TokenInfo | None = None
        for value, info in self._tokens.items():
            stored_bytes = value.encode("utf-8", errors="surrogatepass")
            # Always iterate all tokens to maintain constant-time behavior
            if len(presented_bytes) == len(stored_bytes) and hmac.compare_digest(
                presented_bytes, stored_bytes
            ):
                match = info
        return match

    def validate(self, presented: str) -> ValidationResult:
        if not self._tokens:
            return ValidationResult.ok(None)

        info = self._match(presented)
        if info is None:
            return ValidationResult.invalid(InvalidReason.NOT_FOUND)
        if not info.active:
            return ValidationResult.invalid(InvalidReason.DISABLED, info)
        if info.is_expired(_utcnow()):
            return ValidationResult.invalid(InvalidReason.EXPIRED, info)
        return ValidationResult.ok(info)

    def validate_header(self, header: str | None) -> ValidationResult:
        """Validate a raw Authorization header value."""
        if not self._tokens:
            return ValidationResult.ok(None)

        token, reason = extract_bearer(header)
        if token is None:
            return ValidationResult.invalid(reason)
        return self.validate(token)

    async def record_usage(self, presented: str) -> None:
        """Bump usage counters for a matching token. Unknown tokens are ignored."""
        info = self._match(presented)
        if info is None:
            return

        info.last_used_at = _utcnow()
        info.usage_count += 1
        await self._persistence.save_token(info.value, info.to_state())

    def role_of(self, presented: str) -> TokenRole | None:
        info = self._match(presented)
        return info.role if info else None

    async def _set_active(self, presented: str, active: bool) -> bool:
        info = self._match(presented)
        if info is None:
            return False

        info.active = active
        await self._persistence.save_token(info.value, info.to_state())
        logger.info(
            "Token enabled" if active else "Token disabled",
            extra={"audit_data": {"token": mask_secret(info.value), "owner_id": info.owner_id}},
        )
        return True

    async def disable_token(self, presented: str) -> bool:
        return await self._set_active(presented, False)

    async def enable_token(self, presented: str) -> bool:
        return await self._set_active(presented, True)

    def token_info(self, presented: str) -> dict | None:
        info = self._match(presented)
        return info.public_view(_utcnow()) if info else None

    def stats(self) -> TokenStats:
        now = _utcnow()
        active_tokens = expired_tokens = total_usage = 0
        usage_by_owner: dict[str, int] = {}
        tokens_by_owner: dict[str, int] = {}

        for info in self._tokens.values():
            total_usage += info.usage_count
            if info.is_expired(now):
                expired_tokens += 1
            elif info.active:
                active_tokens += 1

            owner = info.owner_id or "anonymous"
            usage_by_owner[owner] = usage_by_owner.get(owner, 0) + info.usage_count
            tokens_by_owner[owner] = tokens_by_owner.get(owner, 0) + 1

        return TokenStats(
            total_tokens=len(self._tokens),
            active_tokens=active_tokens,
            expired_tokens=expired_tokens,
            total_usage=total_usage,
            usage_by_owner=usage_by_owner,
            tokens_by_owner=tokens_by_owner,
        )

    def list_tokens(self) -> list[dict]:
        now = _utcnow()
        return [info.public_view(now) for info in self._tokens.values()]
