"""Process-wide gateway state, built once at startup and passed explicitly."""

from dataclasses import dataclass

from fastapi import Request

from src.config.settings import Settings
from src.logging.audit import get_audit_logger
from src.pool.manager import CredentialPool
from src.security.auth import Gatekeeper
from src.state.factory import create_state_store
from src.state.persistence import StatePersistence
from src.tokens.config import parse_token_config
from src.tokens.registry import TokenRegistry
from src.upstream.executor import FailoverExecutor
from src.upstream.transport import HTTPTransport, HttpxTransport


@dataclass
class GatewayContext:
    settings: Settings
    persistence: StatePersistence
    pool: CredentialPool
    registry: TokenRegistry
    gatekeeper: Gatekeeper
    transport: HTTPTransport
    executor: FailoverExecutor

    @property
    def mode(self) -> str:
        return "pool" if self.gatekeeper.pool_mode else "passthrough"

    async def close(self) -> None:
        await self.transport.close()


async def build_context(settings: Settings, transport: HTTPTransport | None = None) -> GatewayContext:
    """Parse configuration, restore persisted state and wire the components."""
    logger = get_audit_logger()
    persistence = StatePersistence(create_state_store(settings))

    pool = CredentialPool(
        settings.api_keys_list,
        cooldown_seconds=settings.key_cooldown_seconds,
        max_retries=settings.key_max_retries,
        persistence=persistence,
    )
    registry = TokenRegistry(
        parse_token_config(settings.user_tokens, settings.mcp_auth_token),
        persistence=persistence,
    )
    await pool.load_state()
    await registry.load_state()

    transport = transport or HttpxTransport()
    executor = FailoverExecutor(
        pool,
        transport,
        base_url=settings.upstream_base_url,
        default_timeout=settings.upstream_timeout_seconds,
    )
    context = GatewayContext(
        settings=settings,
        persistence=persistence,
        pool=pool,
        registry=registry,
        gatekeeper=Gatekeeper(registry),
        transport=transport,
        executor=executor,
    )

    if len(pool) == 0:
        logger.warning("No API keys found in EXA_API_KEYS or EXA_API_KEY")
    logger.info(
        "Gateway context initialized",
        extra={"audit_data": {
            "mode": context.mode,
            "tokens": len(registry),
            "persistence": persistence.enabled,
            "pool": pool.status().as_dict(),
        }},
    )
    return context


def get_context(request: Request) -> GatewayContext:
    """FastAPI dependency returning the context stored by the app lifespan."""
    return request.app.state.context
