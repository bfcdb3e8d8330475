from __future__ import annotations

import contextlib
import os

import httpx
import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from handshake.exchange import CodeExchange, build_code_exchange
from handshake.flow import AuthFlow
from handshake.relay_server import RelayServer
from handshake.session_store import SessionStore
from relay.constants import APP_VERSION, LOGGER, PROVIDER_LOGGER
from relay.env import RelaySettings, load_env, load_settings, setup_logging


def build_provider_client(settings: RelaySettings, *, debug_enabled: bool) -> httpx.AsyncClient:
    async def log_request(request: httpx.Request) -> None:
        if not debug_enabled:
            return
        PROVIDER_LOGGER.info("Google request %s %s", request.method, request.url)

    async def log_response(response: httpx.Response) -> None:
        if not debug_enabled:
            return
        PROVIDER_LOGGER.info(
            "Google response %s %s -> %s",
            response.request.method,
            response.request.url,
            response.status_code,
        )
        if response.status_code >= 400:
            body = await response.aread()
            text = body.decode("utf-8", errors="replace")
            if len(text) > 1000:
                text = text[:1000] + "...<truncated>"
            PROVIDER_LOGGER.warning("Google error body: %s", text)

    return httpx.AsyncClient(
        timeout=settings.http_timeout_seconds,
        event_hooks={"request": [log_request], "response": [log_response]},
    )


def health_route(store: SessionStore, exchange: CodeExchange) -> Route:
    async def health(request: Request) -> Response:
        del request
        return JSONResponse(
            {
                "status": "ok",
                "version": APP_VERSION,
                "exchange_mode": exchange.mode,
                "sessions": len(store),
            }
        )

    return Route("/health", health, methods=["GET"])


def build_app(
    settings: RelaySettings,
    *,
    store: SessionStore | None = None,
    exchange: CodeExchange | None = None,
    debug_enabled: bool = False,
) -> Starlette:
    provider_client = build_provider_client(settings, debug_enabled=debug_enabled)
    if exchange is None:
        exchange = build_code_exchange(
            settings.google_client_id,
            settings.google_client_secret,
            client=provider_client,
        )
    if store is None:
        store = SessionStore(
            ttl_seconds=settings.session_ttl_seconds,
            sweep_interval_seconds=settings.sweep_interval_seconds,
        )

    flow = AuthFlow(
        store,
        exchange,
        client_id=settings.google_client_id,
        public_url=settings.public_base_url,
        scopes=settings.scopes,
    )
    relay_server = RelayServer(flow, cors_origins=settings.cors_origins)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        await store.start()
        LOGGER.info("Auth relay started (%s exchange)", exchange.mode)
        try:
            yield
        finally:
            await store.stop()
            await provider_client.aclose()

    app = Starlette(
        routes=[*relay_server.routes(), health_route(store, exchange)],
        lifespan=lifespan,
    )
    app.state.flow = flow
    app.state.store = store
    return app


def create_app() -> Starlette:
    load_env()
    debug_enabled = setup_logging()
    settings = load_settings()
    return build_app(settings, debug_enabled=debug_enabled)


def main() -> None:
    host = os.getenv("RELAY_HOST", "127.0.0.1")
    port = int(os.getenv("RELAY_PORT", "8000"))
    app = create_app()
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
