"""HTTP surface of the runner (FastAPI).

Every route answers with a JSON envelope carrying a `success` flag. Domain
failures (`AutomationError`) are rendered as `{"success": false, "error":
<message>}` with the status the error class declares; anything else is
logged with its traceback and rendered as a 500.

The app owns one `ExecutionGateway` (and thus one pooled HTTP client) for
its lifetime; it is created on startup and closed on shutdown. Tests inject
an `httpx.MockTransport` through `create_app(transport=...)` or override the
`get_orchestrator` dependency.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional

import httpx
from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .chat import ChatReplyExtractor
from .config import Settings, get_settings
from .errors import AutomationError, BadRequest
from .gateway import ExecutionGateway
from .introspector import analyze_workflow
from .models.results import ChatRequest, ExecuteWorkflowRequest
from .orchestrator import ExecutionOrchestrator
from .reply_extraction import ai_results
from .scenarios import generate_test_scenarios

logger = logging.getLogger(__name__)

UNEXPECTED_ERROR_MESSAGE = "Failed to execute workflow"

__all__ = ["create_app", "get_gateway", "get_orchestrator"]


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def register_exception_handlers(app: FastAPI) -> None:
    """Install the error envelope for domain, validation and unexpected errors."""

    @app.exception_handler(AutomationError)
    async def handle_automation_error(request: Request, exc: AutomationError):
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "%s %s failed with %s: %s",
            request.method,
            request.url.path,
            exc.status_code,
            exc.message,
        )
        return _error_response(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"Invalid request: {location} {first.get('msg', '')}".strip()
        logger.warning("%s %s rejected: %s", request.method, request.url.path, message)
        return _error_response(400, message)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error_response(500, UNEXPECTED_ERROR_MESSAGE)


def get_gateway(request: Request) -> ExecutionGateway:
    return request.app.state.gateway


def get_orchestrator(request: Request) -> ExecutionOrchestrator:
    return request.app.state.orchestrator


def create_app(
    settings: Optional[Settings] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Configuration; defaults to the cached environment settings.
        transport: Optional httpx transport for the engine client (tests).
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        gateway = ExecutionGateway(settings, transport=transport)
        app.state.gateway = gateway
        app.state.orchestrator = ExecutionOrchestrator(
            gateway, settings, chat=ChatReplyExtractor(gateway, settings)
        )
        logger.info("n8n workflow runner started (engine %s)", settings.N8N_BASE_URL or "<unset>")
        try:
            yield
        finally:
            await gateway.aclose()
            logger.info("n8n workflow runner stopped")

    app = FastAPI(title="n8n Workflow Runner", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    register_exception_handlers(app)

    @app.get("/health")
    async def health(gateway: ExecutionGateway = Depends(get_gateway)) -> Dict[str, Any]:
        status = await gateway.health_check()
        return {"success": status.healthy, **status.model_dump()}

    @app.get("/workflows")
    async def list_workflows(
        limit: Optional[int] = Query(default=None, ge=1),
        gateway: ExecutionGateway = Depends(get_gateway),
    ) -> Dict[str, Any]:
        workflows = await gateway.get_workflows(limit)
        return {
            "success": True,
            "workflows": [
                {
                    "id": w.id,
                    "name": w.name,
                    "active": w.active,
                    "tags": w.tags,
                    "createdAt": w.createdAt,
                    "updatedAt": w.updatedAt,
                    "analysis": analyze_workflow(w).model_dump(mode="json"),
                }
                for w in workflows
            ],
        }

    @app.get("/workflows/{workflow_id}/triggers")
    async def workflow_triggers(
        workflow_id: str, gateway: ExecutionGateway = Depends(get_gateway)
    ) -> Dict[str, Any]:
        workflow = await gateway.get_workflow(workflow_id)
        return {"success": True, "analysis": analyze_workflow(workflow).model_dump(mode="json")}

    @app.get("/workflows/{workflow_id}/scenarios")
    async def workflow_scenarios(
        workflow_id: str, gateway: ExecutionGateway = Depends(get_gateway)
    ) -> Dict[str, Any]:
        workflow = await gateway.get_workflow(workflow_id)
        scenarios = generate_test_scenarios(workflow)
        return {"success": True, "scenarios": [s.model_dump(mode="json") for s in scenarios]}

    @app.get("/workflows/{workflow_id}/executions")
    async def workflow_executions(
        workflow_id: str,
        limit: int = Query(default=20, ge=1, le=250),
        gateway: ExecutionGateway = Depends(get_gateway),
    ) -> Dict[str, Any]:
        executions = await gateway.get_executions(workflow_id, limit)
        return {"success": True, "executions": [e.model_dump(mode="json") for e in executions]}

    @app.post("/workflows/{workflow_id}/execute")
    async def execute_workflow(
        workflow_id: str,
        request: Request,
        body: Optional[ExecuteWorkflowRequest] = None,
        orchestrator: ExecutionOrchestrator = Depends(get_orchestrator),
    ) -> Dict[str, Any]:
        result = await orchestrator.execute(
            workflow_id,
            body or ExecuteWorkflowRequest(),
            is_cancelled=request.is_disconnected,
        )
        return result.to_response()

    @app.get("/monitoring/{workflow_id}")
    async def live_monitoring(
        workflow_id: str, gateway: ExecutionGateway = Depends(get_gateway)
    ) -> Dict[str, Any]:
        monitoring = await gateway.get_live_monitoring(workflow_id)
        return {"success": True, "data": monitoring.model_dump(mode="json")}

    @app.get("/executions/{execution_id}")
    async def execution_detail(
        execution_id: str, gateway: ExecutionGateway = Depends(get_gateway)
    ) -> Dict[str, Any]:
        execution = await gateway.get_execution(execution_id)
        return {"success": True, "execution": execution.model_dump(mode="json")}

    @app.get("/executions/{execution_id}/ai-results")
    async def execution_ai_results(
        execution_id: str, gateway: ExecutionGateway = Depends(get_gateway)
    ) -> Dict[str, Any]:
        execution = await gateway.get_execution(execution_id)
        now = datetime.now(timezone.utc)
        results = ai_results(execution, now=now)
        return {
            "success": True,
            "results": [r.model_dump(mode="json") for r in results],
            "executionId": execution_id,
            "metadata": {
                "totalResults": len(results),
                "executionStatus": execution.status or "unknown",
                "timestamp": now.isoformat(),
            },
        }

    @app.post("/executions/{execution_id}/stop")
    async def stop_execution(
        execution_id: str, gateway: ExecutionGateway = Depends(get_gateway)
    ) -> Dict[str, Any]:
        return {"success": await gateway.stop_execution(execution_id)}

    @app.post("/ai-agent/chat")
    async def ai_agent_chat(
        body: ChatRequest,
        request: Request,
        orchestrator: ExecutionOrchestrator = Depends(get_orchestrator),
    ) -> Dict[str, Any]:
        if not body.workflowId or not body.message.strip():
            raise BadRequest("workflowId and message are required")
        if body.waitForResultMs is None:
            body = body.model_copy(update={"waitForResultMs": settings.CHAT_ROUTE_TIMEOUT_MS})
        reply = await orchestrator.chat.send(body, is_cancelled=request.is_disconnected)
        return {"success": True, **reply.model_dump(mode="json")}

    return app
