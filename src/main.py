"""Exa Pool Gateway: FastAPI application entry point.

Fronts the Exa search API with a shared pool of upstream keys and a
registry of inbound client tokens. Quota failures rotate the pool;
token usage is tracked per client.
"""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from src.config.settings import get_settings
from src.context import GatewayContext, build_context, get_context
from src.logging.audit import (
    RequestTimer,
    generate_request_id,
    get_audit_logger,
    request_id_var,
    setup_logging,
)
from src.security.auth import AccessDecision, AccessOutcome, require_access, require_admin
from src.tools.exa import ToolArgumentError, UnknownToolError, list_tools, run_tool
from src.upstream.errors import (
    PoolExhaustedError,
    UpstreamHTTPError,
    UpstreamTimeoutError,
    UpstreamTransportError,
)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle hooks."""
    setup_logging()
    owns_context = getattr(app.state, "context", None) is None
    if owns_context:
        app.state.context = await build_context(get_settings())
    get_audit_logger().info("Gateway started")
    yield
    if owns_context:
        await app.state.context.close()
        app.state.context = None
    get_audit_logger().info("Gateway stopped")


app = FastAPI(
    title="Exa Pool Gateway",
    description="Credential-pooling gateway for the Exa search API",
    version=VERSION,
    lifespan=lifespan,
)


@app.exception_handler(PoolExhaustedError)
async def pool_exhausted_handler(request: Request, exc: PoolExhaustedError):
    return JSONResponse(
        status_code=503,
        content={"error": {"code": "pool_exhausted", "message": str(exc), "pool": exc.status}},
    )


@app.exception_handler(UpstreamHTTPError)
async def upstream_http_handler(request: Request, exc: UpstreamHTTPError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": "upstream_error", "message": exc.message}},
    )


@app.exception_handler(UpstreamTransportError)
async def upstream_transport_handler(request: Request, exc: UpstreamTransportError):
    if isinstance(exc, UpstreamTimeoutError):
        return JSONResponse(
            status_code=504,
            content={"error": {"code": "upstream_timeout", "message": str(exc)}},
        )
    return JSONResponse(
        status_code=502,
        content={"error": {"code": "upstream_unreachable", "message": str(exc)}},
    )


@app.get("/health")
async def health(context: GatewayContext = Depends(get_context)):
    return {
        "status": "ok",
        "version": VERSION,
        "mode": context.mode,
        "auth_required": context.gatekeeper.pool_mode,
        "pool": context.pool.status().as_dict(),
    }


@app.get("/tools")
async def tools(context: GatewayContext = Depends(get_context)):
    return {"tools": list_tools(context.settings.enabled_tools_list)}


def _passthrough_key(request: Request) -> str | None:
    """Caller-supplied upstream key: ?exaApiKey=... or X-Exa-Api-Key header."""
    return request.query_params.get("exaApiKey") or request.headers.get("X-Exa-Api-Key") or None


@app.post("/tools/{tool_id}")
async def call_tool(
    tool_id: str,
    request: Request,
    access: AccessDecision = Depends(require_access),
    context: GatewayContext = Depends(get_context),
):
    """Run one Exa tool.

    Pipeline: Auth -> (passthrough key check) -> Format -> Execute with failover -> Log
    """
    logger = get_audit_logger()
    rid = generate_request_id()
    request_id_var.set(rid)

    api_key = None
    if access.outcome == AccessOutcome.PASSTHROUGH_ALLOWED:
        api_key = _passthrough_key(request)
        if not api_key:
            return JSONResponse(
                status_code=401,
                content={"error": {
                    "code": "missing_upstream_key",
                    "message": "Provide exaApiKey query param or X-Exa-Api-Key header",
                }},
            )

    try:
        args = await request.json() if await request.body() else {}
    except ValueError:
        return JSONResponse(
            status_code=400,
            content={"error": {"code": "invalid_json", "message": "Request body must be JSON"}},
        )
    if not isinstance(args, dict):
        return JSONResponse(
            status_code=400,
            content={"error": {"code": "invalid_arguments", "message": "Arguments must be a JSON object"}},
        )

    owner = access.token.owner_id if access.token else None
    try:
        with RequestTimer() as timer:
            result = await run_tool(
                tool_id,
                args,
                context.executor,
                enabled=context.settings.enabled_tools_list,
                api_key=api_key,
            )
    except UnknownToolError:
        return JSONResponse(
            status_code=404,
            content={"error": {"code": "unknown_tool", "message": f"Tool '{tool_id}' is not available"}},
        )
    except ToolArgumentError as e:
        return JSONResponse(
            status_code=400,
            content={"error": {"code": "invalid_arguments", "message": str(e)}},
        )

    logger.info(
        "Tool call completed",
        extra={"audit_data": {
            "tool": tool_id,
            "owner_id": owner,
            "mode": context.mode,
            "latency_ms": timer.elapsed_ms,
        }},
    )
    return JSONResponse(content={"tool": tool_id, "result": result}, headers={"X-Request-Id": rid})


# --- Admin endpoints ---


@app.get("/admin/pool")
async def pool_status(
    _: AccessDecision = Depends(require_admin),
    context: GatewayContext = Depends(get_context),
):
    return context.pool.status().as_dict()


@app.post("/admin/pool/reset")
async def pool_reset(
    _: AccessDecision = Depends(require_admin),
    context: GatewayContext = Depends(get_context),
):
    await context.pool.reset()
    return context.pool.status().as_dict()


@app.get("/admin/tokens")
async def tokens_list(
    _: AccessDecision = Depends(require_admin),
    context: GatewayContext = Depends(get_context),
):
    return {"tokens": context.registry.list_tokens()}


@app.get("/admin/tokens/stats")
async def tokens_stats(
    _: AccessDecision = Depends(require_admin),
    context: GatewayContext = Depends(get_context),
):
    return context.registry.stats().as_dict()


async def _toggle_token(request: Request, context: GatewayContext, active: bool):
    try:
        body = await request.json()
    except ValueError:
        body = None
    token = body.get("token") if isinstance(body, dict) else None
    if not isinstance(token, str) or not token:
        return JSONResponse(
            status_code=400,
            content={"error": {"code": "invalid_arguments", "message": "'token' is required"}},
        )

    if active:
        changed = await context.registry.enable_token(token)
    else:
        changed = await context.registry.disable_token(token)
    if not changed:
        return JSONResponse(
            status_code=404,
            content={"error": {"code": "token_not_found", "message": "Token not found"}},
        )
    return context.registry.token_info(token)


@app.post("/admin/tokens/disable")
async def token_disable(
    request: Request,
    _: AccessDecision = Depends(require_admin),
    context: GatewayContext = Depends(get_context),
):
    return await _toggle_token(request, context, active=False)


@app.post("/admin/tokens/enable")
async def token_enable(
    request: Request,
    _: AccessDecision = Depends(require_admin),
    context: GatewayContext = Depends(get_context),
):
    return await _toggle_token(request, context, active=True)
