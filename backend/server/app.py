"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware and error mapping
- Initialize shared resources (gateway client, store repository,
  panel registry, status summary cache)
- Register routes
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from adapters.gateway.base import MessagingGateway
from adapters.gateway.evolution import EvolutionGateway
from adapters.gateway.function_rpc import FunctionGateway
from adapters.gateway.invoker import GatewayInvoker
from config import AppConfig
from errors import GatewayError, InvalidInput, LinkError, PermissionDenied, SessionExpired
from instances.registrar import InstanceRegistrar
from instances.repository import StoreRepository, SupabaseStoreRepository
from link.runtime import Sleep
from observability import logger
from observability.logger import log_event
from server.routes import register_routes
from session.registry import PanelRegistry
from session.status_cache import StatusSummaryCache
from session.store_link import StoreLink


def create_app(
    config: AppConfig | None = None,
    *,
    repository: StoreRepository | None = None,
    gateway: MessagingGateway | None = None,
    runtime_sleep: Sleep | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    repository / gateway / runtime_sleep are injectable so tests can run
    the full HTTP surface without network access.
    """
    config = config or AppConfig.load_from_env()
    logger.configure(level=config.log_level, json_lines=config.enable_json_logs)

    gateway = gateway or build_gateway(config)
    repository = repository or build_repository(config)

    def registrar_for(link: StoreLink) -> InstanceRegistrar:
        # Each link forwards its own operator's token
        invoker = GatewayInvoker(gateway, session_provider=lambda: link.operator_session)
        return InstanceRegistrar(repository, invoker)

    registry = PanelRegistry(
        registrar_factory=registrar_for,
        retain_s=config.link_retain_after_last_observer_s,
        runtime_sleep=runtime_sleep,
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        log_event({"event_type": "APP_STARTED", "env": config.env, "gateway_mode": config.gateway_mode})
        yield
        await registry.shutdown_all()
        await gateway.aclose()
        log_event({"event_type": "APP_STOPPED"})

    app = FastAPI(title="WhatsApp Link API", lifespan=lifespan)

    app.state.config = config
    app.state.repository = repository
    app.state.gateway = gateway
    app.state.registry = registry
    app.state.status_cache = StatusSummaryCache(repository=repository, gateway=gateway)

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten later
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    # Routes
    register_routes(app)

    return app


def build_gateway(config: AppConfig) -> MessagingGateway:
    """Build the messaging gateway selected by GATEWAY_MODE."""
    if config.gateway_mode == "function":
        function_url = config.evolution_function_url
        if not function_url:
            raise RuntimeError("SUPABASE_URL or SUPABASE_FUNCTIONS_URL must be set for GATEWAY_MODE=function")
        return FunctionGateway(
            function_url=function_url,
            api_key=config.supabase_key or "",
            timeout_s=config.gateway_timeout_s,
        )

    if not config.evolution_api_url or not config.evolution_api_key:
        raise RuntimeError("EVOLUTION_API_URL and EVOLUTION_API_KEY environment variables not set")
    return EvolutionGateway(
        base_url=config.evolution_api_url,
        api_key=config.evolution_api_key,
        timeout_s=config.gateway_timeout_s,
    )


def build_repository(config: AppConfig) -> StoreRepository:
    if not config.supabase_url or not config.supabase_key:
        raise RuntimeError("SUPABASE_URL and SUPABASE_KEY environment variables not set")
    return SupabaseStoreRepository.from_credentials(config.supabase_url, config.supabase_key)


# ------------------------------------------------------------------
# Error mapping
# ------------------------------------------------------------------

_STATUS_BY_ERROR: tuple[tuple[type[LinkError], int], ...] = (
    (InvalidInput, 422),
    (SessionExpired, 401),
    (PermissionDenied, 403),
    (GatewayError, 502),
)


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(LinkError)
    async def link_error_handler(request: Request, exc: LinkError) -> JSONResponse: # pyright: ignore[reportUnusedFunction]
        status_code = 500
        for error_type, code in _STATUS_BY_ERROR:
            if isinstance(exc, error_type):
                status_code = code
                break

        log_event({
            "level": "warning" if status_code < 500 else "error",
            "event_type": "HTTP_ERROR",
            "path": request.url.path,
            "status_code": status_code,
            "exception": type(exc).__name__,
            "message": str(exc),
        })
        return JSONResponse(
            status_code=status_code,
            content={"error": type(exc).__name__, "message": str(exc)},
        )
