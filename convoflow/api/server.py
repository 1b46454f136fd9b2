"""Workflow control API using aiohttp."""

from __future__ import annotations

from typing import Any

from aiohttp import web

from convoflow.config import ServerConfig
from convoflow.errors import WorkflowBusyError, WorkflowNotFoundError, WorkflowTerminalError
from convoflow.utils.logging import get_logger
from convoflow.workflows.executor import WorkflowExecutor

log = get_logger(__name__)


class ControlServer:
    """Exposes get / advance / cancel / input for workflow instances."""

    def __init__(self, executor: WorkflowExecutor, config: ServerConfig) -> None:
        self._executor = executor
        self._config = config
        self._runner: web.AppRunner | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        app = self._build_app()
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._config.bind, self._config.port)
        await site.start()
        log.info("control_server_started", bind=self._config.bind, port=self._config.port)

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        log.info("control_server_stopped")

    def _build_app(self) -> web.Application:
        app = web.Application(middlewares=[self._error_middleware])
        app.router.add_get("/workflows/{workflow_id}", self._handle_get)
        app.router.add_post("/workflows/{workflow_id}/advance", self._handle_advance)
        app.router.add_post("/workflows/{workflow_id}/cancel", self._handle_cancel)
        app.router.add_post("/workflows/{workflow_id}/input", self._handle_input)
        return app

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------

    @web.middleware
    async def _error_middleware(self, request: web.Request, handler: Any) -> web.StreamResponse:
        try:
            return await handler(request)
        except WorkflowNotFoundError as e:
            return web.json_response({"error": str(e)}, status=404)
        except (WorkflowBusyError, WorkflowTerminalError) as e:
            return web.json_response({"error": str(e)}, status=409)

    async def _handle_get(self, request: web.Request) -> web.Response:
        instance = await self._executor.get(request.match_info["workflow_id"])
        return web.json_response(instance.to_dict())

    async def _handle_advance(self, request: web.Request) -> web.Response:
        workflow_id = request.match_info["workflow_id"]
        result = await self._executor.advance(workflow_id)
        log.info("advance_requested", workflow_id=workflow_id, outcome=result.outcome)
        return web.json_response(result.to_dict())

    async def _handle_cancel(self, request: web.Request) -> web.Response:
        instance = await self._executor.cancel(request.match_info["workflow_id"])
        return web.json_response({"workflow_id": instance.id, "status": instance.status.value})

    async def _handle_input(self, request: web.Request) -> web.Response:
        try:
            payload: Any = await request.json()
        except Exception:
            return web.Response(status=400, text="Invalid JSON")
        if not isinstance(payload, dict):
            return web.Response(status=400, text="Expected a JSON object")

        workflow_id = request.match_info["workflow_id"]
        context = await self._executor.provide_input(workflow_id, payload)
        return web.json_response({"workflow_id": workflow_id, "context": context})
