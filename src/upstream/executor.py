"""Outbound call execution with credential failover.

Flow for a single call:

    credential acquired -> call issued -> success | quota failure | other failure

A quota failure on a pooled credential marks that credential failed,
rotates the pool, and retries exactly once with the new credential; the
retry's outcome is returned as-is. Every other failure, and any failure
on a caller-supplied credential, propagates without touching the pool.
"""

import logging
from typing import Any

from src.logging.audit import RequestTimer
from src.pool.manager import CredentialPool
from src.upstream.errors import PoolExhaustedError, UpstreamHTTPError
from src.upstream.transport import HTTPTransport

logger = logging.getLogger("gateway.upstream")

# Statuses that always mean the credential is out of balance/quota
QUOTA_STATUS_CODES = frozenset({402, 429})
# 403 only counts when the message mentions one of these
QUOTA_KEYWORDS = ("balance", "quota", "credit", "limit", "insufficient", "exceeded", "payment")


def is_quota_failure(status_code: int, message: str | None = None) -> bool:
    if status_code in QUOTA_STATUS_CODES:
        return True
    if status_code == 403 and message:
        lowered = message.lower()
        return any(keyword in lowered for keyword in QUOTA_KEYWORDS)
    return False


class FailoverExecutor:
    def __init__(
        self,
        pool: CredentialPool,
        transport: HTTPTransport,
        base_url: str,
        default_timeout: float = 25.0,
    ):
        self._pool = pool
        self._transport = transport
        self._base_url = base_url.rstrip("/")
        self._default_timeout = default_timeout

    def _url(self, endpoint: str) -> str:
        return f"{self._base_url}/{endpoint.lstrip('/')}"

    async def _send(self, method, endpoint, payload, api_key, timeout) -> Any:
        with RequestTimer() as timer:
            result = await self._transport.send(method, self._url(endpoint), api_key, payload, timeout)
        logger.debug(
            "Upstream call succeeded",
            extra={"audit_data": {"endpoint": endpoint, "latency_ms": timer.elapsed_ms}},
        )
        return result

    async def execute_with_failover(
        self,
        endpoint: str,
        payload: dict | None = None,
        override_credential: str | None = None,
        timeout: float | None = None,
        method: str = "POST",
    ) -> Any:
        """Perform one upstream call, rotating once on a quota failure.

        Args:
            endpoint: Path relative to the upstream base URL.
            payload: JSON body (ignored for GET).
            override_credential: Caller-supplied key; bypasses the pool.
            timeout: Per-call timeout in seconds.
            method: HTTP method.

        Raises:
            PoolExhaustedError: no pooled credential is available.
            UpstreamHTTPError / UpstreamTransportError: the call failed.
        """
        timeout = timeout or self._default_timeout
        pooled = override_credential is None
        api_key = override_credential if not pooled else self._pool.active_credential()
        if not api_key:
            raise PoolExhaustedError(self._pool.status().as_dict())

        try:
            return await self._send(method, endpoint, payload, api_key, timeout)
        except UpstreamHTTPError as e:
            if not pooled or not is_quota_failure(e.status_code, e.message):
                raise

            logger.warning(
                "Quota failure detected",
                extra={"audit_data": {"endpoint": endpoint, "upstream_status": e.status_code}},
            )
            rotated = await self._pool.record_failure(e.message, secret=api_key)
            retry_key = self._pool.active_credential() if rotated else None
            if retry_key is None:
                raise PoolExhaustedError(self._pool.status().as_dict()) from e

        logger.info("Retrying with rotated credential", extra={"audit_data": {"endpoint": endpoint}})
        return await self._send(method, endpoint, payload, retry_key, timeout)
