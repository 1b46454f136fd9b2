"""Convoflow entry point: wires the store, capabilities and executor together."""

from __future__ import annotations

import asyncio
import json
import signal
import sys
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import click

from convoflow.api.server import ControlServer
from convoflow.capabilities import (
    HttpActionCapability,
    IntegrationManager,
    SlackWebhookCapability,
)
from convoflow.config import Settings, load_settings
from convoflow.errors import ConvoflowError
from convoflow.storage import WorkflowStore, create_store
from convoflow.utils.logging import get_logger, setup_logging
from convoflow.workflows.executor import AdvanceResult, WorkflowExecutor, drive_workflow
from convoflow.workflows.notifications import NotificationFanout
from convoflow.workflows.templates import get_template, instantiate_workflow

log = get_logger(__name__)

T = TypeVar("T")


def build_integrations(settings: Settings) -> IntegrationManager:
    caps = settings.capabilities
    manager = IntegrationManager(timeout=caps.timeout_seconds)
    if caps.http.base_url:
        manager.register(
            HttpActionCapability(
                base_url=caps.http.base_url,
                actions=caps.http.actions,
                api_key=caps.http.api_key,
                timeout=caps.timeout_seconds,
            )
        )
    if caps.slack.webhook_url:
        manager.register(
            SlackWebhookCapability(
                webhook_url=caps.slack.webhook_url,
                channel=caps.slack.channel,
                timeout=caps.timeout_seconds,
            )
        )
    return manager


class Convoflow:
    """Application wiring shared by every CLI command."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.store: WorkflowStore = create_store(settings)
        self.integrations = build_integrations(settings)
        notifications = NotificationFanout(
            self.integrations,
            self.store,
            chat_enabled=settings.notifications.chat_enabled,
            email_enabled=settings.notifications.email_enabled,
        )
        self.executor = WorkflowExecutor(
            self.store,
            self.integrations,
            config=settings.executor,
            notifications=notifications,
            default_organizer=settings.notifications.default_organizer,
        )

    async def start(self) -> None:
        await self.store.start()
        log.debug("convoflow_started", backend=self.settings.storage.backend)

    async def stop(self) -> None:
        await self.integrations.close()
        await self.store.stop()


async def _with_app(settings: Settings, fn: Callable[[Convoflow], Awaitable[T]]) -> T:
    app = Convoflow(settings)
    await app.start()
    try:
        return await fn(app)
    finally:
        await app.stop()


def _parse_pairs(pairs: tuple[str, ...]) -> dict[str, Any]:
    data: dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got {pair!r}")
        data[key.strip()] = value
    return data


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _echo_result(result: AdvanceResult) -> None:
    _echo_json(result.to_dict())


def _run(settings: Settings, fn: Callable[[Convoflow], Awaitable[Any]]) -> Any:
    try:
        return asyncio.run(_with_app(settings, fn))
    except ConvoflowError as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.option("--config", "config_path", default=None, help="Path to config YAML file")
@click.option("--log-level", default=None, help="Log level (DEBUG, INFO, WARNING, ERROR)")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, log_level: str | None) -> None:
    """Drive conversational workflows."""
    settings = load_settings(config_path)
    if log_level:
        settings.log_level = log_level
    setup_logging(level=settings.log_level, json_output=settings.log_json)
    ctx.obj = settings


@cli.command()
@click.option("--template", "template_id", default="meeting_scheduler", show_default=True)
@click.option("--conversation", "conversation_id", required=True, help="Owning conversation id")
@click.option("--context", "context_json", default=None, help="Initial context as a JSON object")
@click.argument("pairs", nargs=-1)
@click.pass_obj
def create(
    settings: Settings,
    template_id: str,
    conversation_id: str,
    context_json: str | None,
    pairs: tuple[str, ...],
) -> None:
    """Create a workflow from a template. Extra KEY=VALUE pairs seed the context."""
    try:
        template = get_template(template_id)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--template") from e

    context: dict[str, Any] = {}
    if context_json:
        try:
            context = json.loads(context_json)
        except json.JSONDecodeError as e:
            raise click.BadParameter(f"invalid JSON: {e}", param_hint="--context") from e
    context.update(_parse_pairs(pairs))

    instance = instantiate_workflow(template, conversation_id, context)

    async def _create(app: Convoflow) -> None:
        await app.store.create(instance)
        log.info("workflow_created", workflow_id=instance.id, template=template.id)

    _run(settings, _create)
    click.echo(instance.id)


@cli.command()
@click.argument("workflow_id")
@click.pass_obj
def advance(settings: Settings, workflow_id: str) -> None:
    """Run the next eligible task."""
    _echo_result(_run(settings, lambda app: app.executor.advance(workflow_id)))


@cli.command()
@click.argument("workflow_id")
@click.option("--max-steps", default=20, show_default=True)
@click.pass_obj
def run(settings: Settings, workflow_id: str, max_steps: int) -> None:
    """Advance until the workflow finishes, fails or needs input."""
    _echo_result(
        _run(settings, lambda app: drive_workflow(app.executor, workflow_id, max_steps))
    )


@cli.command()
@click.argument("workflow_id")
@click.pass_obj
def cancel(settings: Settings, workflow_id: str) -> None:
    """Cancel a workflow."""
    instance = _run(settings, lambda app: app.executor.cancel(workflow_id))
    click.echo(f"{instance.id}: {instance.status.value}")


@cli.command()
@click.argument("workflow_id")
@click.option("--events", is_flag=True, help="Include the execution log")
@click.pass_obj
def show(settings: Settings, workflow_id: str, events: bool) -> None:
    """Print a workflow as JSON."""

    async def _show(app: Convoflow) -> dict[str, Any]:
        data = (await app.executor.get(workflow_id)).to_dict()
        if events:
            data["events"] = [
                {
                    "event": e.event,
                    "task_id": e.task_id,
                    "detail": e.detail,
                    "created_at": e.created_at.isoformat(),
                }
                for e in await app.store.list_events(workflow_id)
            ]
        return data

    _echo_json(_run(settings, _show))


@cli.command("input")
@click.argument("workflow_id")
@click.argument("pairs", nargs=-1, required=True)
@click.pass_obj
def input_(settings: Settings, workflow_id: str, pairs: tuple[str, ...]) -> None:
    """Merge KEY=VALUE facts into a workflow's context."""
    partial = _parse_pairs(pairs)
    _echo_json(_run(settings, lambda app: app.executor.provide_input(workflow_id, partial)))


async def _serve(settings: Settings) -> None:
    app = Convoflow(settings)
    server = ControlServer(app.executor, settings.server)

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        log.info("shutdown_signal")
        stop_event.set()

    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _signal_handler)

    await app.start()
    await server.start()
    try:
        if sys.platform == "win32":
            while not stop_event.is_set():
                await asyncio.sleep(1)
        else:
            await stop_event.wait()
    except KeyboardInterrupt:
        pass
    finally:
        await server.stop()
        await app.stop()


@cli.command()
@click.pass_obj
def serve(settings: Settings) -> None:
    """Run the HTTP control API."""
    asyncio.run(_serve(settings))


if __name__ == "__main__":
    cli()
