"""Inbound token configuration parsing.

USER_TOKENS is a comma-separated list of ``token[:owner[:expiry]]``
entries, all with the ``user`` role. The expiry field keeps any further
colons, so full ISO-8601 timestamps work. MCP_AUTH_TOKEN produces a single
``admin`` token, but only when USER_TOKENS yields no entries at all.

Expiry values:
- ISO 8601 date or datetime: "2025-12-31", "2025-12-31T18:00:00+02:00"
  (dates expire at 00:00 UTC; naive datetimes are read as UTC)
- "never", "infinite", "∞", "none", "-" or empty: never expires
- anything else: never expires, logged as a configuration warning
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

logger = logging.getLogger("gateway.tokens")

NEVER_EXPIRES = frozenset({"never", "infinite", "∞", "none", "-", ""})


class TokenRole(str, Enum):
    ADMIN = "admin"
    USER = "user"


@dataclass
class TokenSpec:
    token: str
    owner_id: str | None = None
    role: TokenRole = TokenRole.USER
    expires_at: datetime | None = None


def parse_expiry(raw: str | None) -> datetime | None:
    """Parse an expiry field. Returns None for tokens that never expire."""
    if raw is None:
        return None

    value = raw.strip()
    if value.lower() in NEVER_EXPIRES:
        return None

    try:
        # A bare date parses as midnight; any date/time separator is accepted
        parsed = datetime.fromisoformat(value)
    except ValueError:
        logger.warning(
            "Invalid token expiry, treating as never expires",
            extra={"audit_data": {"expiry": value}},
        )
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_token_entries(user_tokens: str) -> list[TokenSpec]:
    specs = []
    for entry in user_tokens.split(","):
        entry = entry.strip()
        if not entry:
            continue

        parts = entry.split(":", 2)
        token = parts[0].strip()
        if not token:
            continue

        owner_id = parts[1].strip() if len(parts) > 1 else ""
        expiry = parts[2] if len(parts) > 2 else None

        specs.append(TokenSpec(
            token=token,
            owner_id=owner_id or None,
            role=TokenRole.USER,
            expires_at=parse_expiry(expiry),
        ))
    return specs


def parse_token_config(user_tokens: str, admin_token: str) -> list[TokenSpec]:
    """Build the token list from USER_TOKENS, falling back to the admin token."""
    specs = parse_token_entries(user_tokens)
    if not specs and admin_token.strip():
        specs.append(TokenSpec(token=admin_token.strip(), role=TokenRole.ADMIN))
    return specs
