"""Main CLI entry point for the n8n-workflow-runner.

This module provides a command-line interface using Typer on top of the same
components the HTTP API uses:
1.  `serve` runs the FastAPI app (n8n_workflow_runner.api) under uvicorn.
2.  `analyze` prints the trigger analysis of one workflow.
3.  `execute` runs a workflow through the orchestrator (trigger resolution,
    webhook-to-manual fallback, chat replies).
4.  `chat` sends one message to a chat workflow and prints the reply.
5.  `monitor` prints the live monitoring summary of a workflow.

Every command prints JSON on success. Domain errors print the message and
exit with status 1.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

import typer

# Load .env file if present (before any config access)
from dotenv import find_dotenv, load_dotenv

env_file = find_dotenv(usecwd=True)
if env_file:
    load_dotenv(env_file)
    logging.debug("Loaded environment from %s", env_file)

from .chat import ChatReplyExtractor
from .config import Settings, get_settings
from .errors import AutomationError
from .gateway import ExecutionGateway
from .introspector import analyze_workflow
from .models.results import ChatRequest, ExecuteWorkflowRequest, ExecutionType
from .orchestrator import ExecutionOrchestrator

app = typer.Typer(help="n8n workflow runner CLI")

T = TypeVar("T")


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def _run(settings: Settings, action: Callable[[ExecutionGateway], Awaitable[T]]) -> T:
    """Run one async action against a fresh gateway, mapping errors to exit 1."""

    async def _main() -> T:
        async with ExecutionGateway(settings) as gateway:
            return await action(gateway)

    try:
        return asyncio.run(_main())
    except AutomationError as e:
        typer.echo(f"Error ({e.status_code}): {e.message}", err=True)
        raise typer.Exit(code=1) from e


def _setup() -> Settings:
    settings = get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL)
    return settings


@app.callback()
def main() -> None:  # pragma: no cover - simple callback
    """n8n-workflow-runner CLI.

    Use a subcommand like 'serve' or 'execute'.
    """
    pass


@app.command(help="Serve the HTTP API with uvicorn.")
def serve(
    host: Optional[str] = typer.Option(None, help="Bind host (overrides API_HOST)"),
    port: Optional[int] = typer.Option(None, help="Bind port (overrides API_PORT)"),
) -> None:
    import uvicorn

    from .api import create_app

    settings = _setup()
    uvicorn.run(
        create_app(settings),
        host=host or settings.API_HOST,
        port=port or settings.API_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


@app.command(help="Print the triggers of a workflow.")
def analyze(workflow_id: str = typer.Argument(..., help="n8n workflow id")) -> None:
    settings = _setup()

    async def _action(gateway: ExecutionGateway) -> Any:
        workflow = await gateway.get_workflow(workflow_id)
        return analyze_workflow(workflow).model_dump(mode="json")

    _echo_json(_run(settings, _action))


@app.command(help="Execute a workflow through the best available trigger.")
def execute(
    workflow_id: str = typer.Argument(..., help="n8n workflow id"),
    type_: Optional[ExecutionType] = typer.Option(
        None, "--type", help="Force a webhook or manual run; 'test' lets the runner decide"
    ),
    trigger_type: Optional[str] = typer.Option(
        None, help="Explicit trigger kind (chat, webhook or manual)"
    ),
    trigger_node_id: Optional[str] = typer.Option(None, help="Specific trigger node id"),
    payload: Optional[str] = typer.Option(None, help="JSON object sent as the payload"),
) -> None:
    settings = _setup()
    try:
        body = json.loads(payload) if payload else {}
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"--payload is not valid JSON: {e}") from e
    if not isinstance(body, dict):
        raise typer.BadParameter("--payload must be a JSON object")
    if trigger_type not in (None, "chat", "webhook", "manual"):
        raise typer.BadParameter("--trigger-type must be chat, webhook or manual")
    request = ExecuteWorkflowRequest(
        type=type_, payload=body, triggerType=trigger_type, triggerNodeId=trigger_node_id
    )

    async def _action(gateway: ExecutionGateway) -> Any:
        orchestrator = ExecutionOrchestrator(gateway, settings)
        result = await orchestrator.execute(workflow_id, request)
        return result.to_response()

    _echo_json(_run(settings, _action))


@app.command(help="Send a chat message to a workflow and print the reply.")
def chat(
    workflow_id: str = typer.Argument(..., help="n8n workflow id"),
    message: str = typer.Argument(..., help="Message text"),
    timeout_ms: Optional[int] = typer.Option(
        None, help="Reply wait budget in ms (defaults to CHAT_ROUTE_TIMEOUT_MS)"
    ),
    trigger_node_id: Optional[str] = typer.Option(None, help="Specific trigger node id"),
) -> None:
    settings = _setup()
    request = ChatRequest(
        workflowId=workflow_id,
        message=message,
        triggerNodeId=trigger_node_id,
        waitForResultMs=timeout_ms if timeout_ms is not None else settings.CHAT_ROUTE_TIMEOUT_MS,
    )

    async def _action(gateway: ExecutionGateway) -> Any:
        reply = await ChatReplyExtractor(gateway, settings).send(request)
        return reply.model_dump(mode="json")

    _echo_json(_run(settings, _action))


@app.command(help="Print the live monitoring summary of a workflow.")
def monitor(workflow_id: str = typer.Argument(..., help="n8n workflow id")) -> None:
    settings = _setup()

    async def _action(gateway: ExecutionGateway) -> Any:
        monitoring = await gateway.get_live_monitoring(workflow_id)
        return monitoring.model_dump(mode="json")

    _echo_json(_run(settings, _action))


if __name__ == "__main__":  # pragma: no cover
    app()
