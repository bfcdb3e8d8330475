from __future__ import annotations

import json
import logging

from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from handshake import polling
from handshake.cors import (
    apply_cors_response,
    cors_error_response,
    origin_of,
    preflight_route,
)
from handshake.errors import InvalidRequest, RelayError
from handshake.flow import AuthFlow
from relay.constants import LOGGER


class RelayServer:
    def __init__(
        self,
        flow: AuthFlow,
        *,
        cors_origins: set[str] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.flow = flow
        self.cors_origins: set[str] = set(cors_origins or ())
        if flow.public_url:
            public_origin = origin_of(flow.public_url)
            if public_origin:
                self.cors_origins.add(public_origin)
        self._logger = logger or LOGGER

    # -- routes ----------------------------------------------------------------

    def routes(self) -> list[Route]:
        routes = [
            Route("/auth/init", self._guarded(self._handle_init), methods=["POST"]),
            Route("/auth/callback", self._guarded(self._handle_callback), methods=["POST"]),
            Route("/auth/callback", self._guarded(self._handle_poll), methods=["GET"]),
            Route("/auth/notify", self._guarded(self._handle_notify), methods=["POST"]),
        ]
        for path in ("/auth/init", "/auth/callback", "/auth/notify"):
            routes.append(preflight_route(path, self.cors_origins))
        return routes

    def _guarded(self, handler):
        async def endpoint(request: Request) -> Response:
            try:
                return await handler(request)
            except RelayError as error:
                self._logger.warning(
                    "%s %s failed: %s",
                    request.method,
                    request.url.path,
                    error.message,
                )
                return self._error(request, error.code, error.message, error.status_code)
            except Exception:
                self._logger.exception("%s %s crashed", request.method, request.url.path)
                return self._error(request, "internal_error", "Internal server error.", 500)

        return endpoint

    # -- handlers --------------------------------------------------------------

    async def _handle_init(self, request: Request) -> Response:
        payload = await self._json_body(request)
        result = await self.flow.init(
            payload.get("minionId"),
            payload.get("chatId"),
            payload.get("chatPlatform"),
            payload.get("scopes"),
            base_url=str(request.base_url),
        )
        return self._json(
            request,
            {
                "success": True,
                "state": result.state,
                "authUrl": result.auth_url,
                "expiresIn": result.expires_in,
            },
        )

    async def _handle_callback(self, request: Request) -> Response:
        payload = await self._json_body(request)
        result = await self.flow.callback(
            payload.get("code"),
            payload.get("state"),
            base_url=str(request.base_url),
        )

        body = {
            "success": True,
            "message": "Account connected (demo mode)" if result.demo else "Account connected",
        }
        if result.user_info.email:
            body["email"] = result.user_info.email
        body["access_token"] = result.tokens.access_token
        if result.tokens.refresh_token:
            body["refresh_token"] = result.tokens.refresh_token
        body["expires_in"] = result.tokens.expires_in
        return self._json(request, body)

    async def _handle_poll(self, request: Request) -> Response:
        result = await polling.poll(self.flow.store, request.query_params.get("state"))
        return self._json(request, result.to_payload())

    async def _handle_notify(self, request: Request) -> Response:
        payload = await self._json_body(request)
        await self.flow.notify(
            payload.get("state"),
            payload.get("success"),
            payload.get("error"),
            payload.get("errorDescription"),
        )
        return self._json(request, {"success": True, "message": "Notification received"})

    # -- helpers ---------------------------------------------------------------

    async def _json_body(self, request: Request) -> dict:
        try:
            payload = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as error:
            raise InvalidRequest("Invalid JSON body.") from error
        if not isinstance(payload, dict):
            raise InvalidRequest("JSON body must be an object.")
        return payload

    def _json(self, request: Request, payload: dict, status_code: int = 200) -> Response:
        return apply_cors_response(
            request,
            JSONResponse(payload, status_code=status_code),
            self.cors_origins,
        )

    def _error(self, request: Request, code: str, description: str, status_code: int) -> Response:
        return cors_error_response(
            request=request,
            allowed_origins=self.cors_origins,
            code=code,
            description=description,
            status_code=status_code,
        )
