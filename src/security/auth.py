"""Bearer token authentication and role gating for gateway clients.

Two deployment modes:
- Pool mode: tokens are configured, every request needs a valid bearer
  token and upstream calls use the credential pool.
- Passthrough mode: no tokens configured, no bearer token required; the
  caller brings its own upstream key (checked by the route, not here).

Rejections carry a machine-readable code. ``unauthenticated`` (wrong or
missing credential) and ``forbidden`` (valid credential, insufficient
role) are distinct outcomes.
"""

from dataclasses import dataclass
from enum import Enum

from fastapi import HTTPException, Request, Security
from fastapi.security import APIKeyHeader

from src.logging.audit import get_audit_logger, mask_secret
from src.tokens.config import TokenRole
from src.tokens.registry import InvalidReason, TokenInfo, TokenRegistry

authorization_header = APIKeyHeader(name="Authorization", auto_error=False)

INSUFFICIENT_ROLE = "insufficient_role"
ADMIN_UNAVAILABLE = "admin_unavailable"

# Disabled or expired tokens are known credentials without access
_FORBIDDEN_REASONS = {InvalidReason.DISABLED, InvalidReason.EXPIRED}


class AccessOutcome(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    AUTHENTICATED_USER = "authenticated_user"
    AUTHENTICATED_ADMIN = "authenticated_admin"
    PASSTHROUGH_ALLOWED = "passthrough_allowed"


@dataclass
class AccessDecision:
    outcome: AccessOutcome
    token: TokenInfo | None = None
    reason: str | None = None

    @property
    def allowed(self) -> bool:
        return self.outcome in (
            AccessOutcome.AUTHENTICATED_USER,
            AccessOutcome.AUTHENTICATED_ADMIN,
            AccessOutcome.PASSTHROUGH_ALLOWED,
        )

    @property
    def status_code(self) -> int:
        if self.allowed:
            return 200
        if self.outcome == AccessOutcome.FORBIDDEN:
            return 403
        return 403 if self.reason in {r.value for r in _FORBIDDEN_REASONS} else 401


class Gatekeeper:
    """Turns registry validation results into access decisions."""

    def __init__(self, registry: TokenRegistry):
        self._registry = registry

    @property
    def pool_mode(self) -> bool:
        return self._registry.is_auth_required()

    def authorize(self, header: str | None, admin_only: bool = False) -> AccessDecision:
        if not self.pool_mode:
            if admin_only:
                # Nothing can hold the admin role without a registry
                return AccessDecision(AccessOutcome.FORBIDDEN, reason=ADMIN_UNAVAILABLE)
            return AccessDecision(AccessOutcome.PASSTHROUGH_ALLOWED)

        result = self._registry.validate_header(header)
        if not result.valid:
            return AccessDecision(
                AccessOutcome.UNAUTHENTICATED, token=result.token, reason=result.reason.value
            )

        if result.token.role == TokenRole.ADMIN:
            return AccessDecision(AccessOutcome.AUTHENTICATED_ADMIN, token=result.token)
        if admin_only:
            return AccessDecision(AccessOutcome.FORBIDDEN, token=result.token, reason=INSUFFICIENT_ROLE)
        return AccessDecision(AccessOutcome.AUTHENTICATED_USER, token=result.token)


_MESSAGES = {
    InvalidReason.MISSING_TOKEN.value: "Missing authentication token",
    InvalidReason.MALFORMED_HEADER.value: "Authorization header must be 'Bearer <token>'",
    InvalidReason.NOT_FOUND.value: "Invalid authentication token",
    InvalidReason.DISABLED.value: "Token is disabled",
    InvalidReason.EXPIRED.value: "Token has expired",
    INSUFFICIENT_ROLE: "Admin role required",
    ADMIN_UNAVAILABLE: "Admin endpoints require configured tokens",
}


def _reject(decision: AccessDecision, request: Request) -> HTTPException:
    get_audit_logger().warning(
        "Request rejected",
        extra={"audit_data": {
            "outcome": decision.outcome.value,
            "reason": decision.reason,
            "token": mask_secret(decision.token.value) if decision.token else None,
            "path": request.url.path,
        }},
    )
    headers = {"WWW-Authenticate": 'Bearer realm="Exa Gateway"'} if decision.status_code == 401 else None
    return HTTPException(
        status_code=decision.status_code,
        detail={"code": decision.reason, "message": _MESSAGES.get(decision.reason, "Unauthorized")},
        headers=headers,
    )


async def _authorize(request: Request, header: str | None, admin_only: bool) -> AccessDecision:
    context = request.app.state.context
    decision = context.gatekeeper.authorize(header, admin_only=admin_only)
    if not decision.allowed:
        raise _reject(decision, request)
    if decision.token is not None:
        await context.registry.record_usage(decision.token.value)
    return decision


async def require_access(
    request: Request, authorization: str | None = Security(authorization_header)
) -> AccessDecision:
    """FastAPI dependency for tool endpoints (any valid token, or passthrough)."""
    return await _authorize(request, authorization, admin_only=False)


async def require_admin(
    request: Request, authorization: str | None = Security(authorization_header)
) -> AccessDecision:
    """FastAPI dependency for admin endpoints."""
    return await _authorize(request, authorization, admin_only=True)
