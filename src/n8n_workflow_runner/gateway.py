"""HTTP gateway to the n8n REST API and webhook endpoints.

This module is the only place in the runner that performs network I/O
against n8n. It wraps two surfaces:

1. The public REST API under `<N8N_BASE_URL>/api/v1` (workflow and execution
   reads, manual runs, stopping executions), authenticated with the
   `X-N8N-API-KEY` header.
2. Webhook delivery under the live root (`/webhook`, active workflows) or
   the test root (`/webhook-test`, workflows listening in the editor).

Webhook URL fallback:
    Which root and which path shape a workflow answers on depends on its
    active state and on per-trigger conventions (chat triggers are often
    mounted under `/<id>/chat`). `post_webhook` therefore tries, in order,
    advancing only while n8n answers 404:

        <chosen root>/<path>
        <chosen root>/<path>/chat
        <other root>/<path>
        <other root>/<path>/chat

    where the chosen root is the live root for active workflows and the test
    root otherwise. Any other status ends the walk and is returned as is.

The gateway never retries; fallback sequencing across trigger kinds belongs
to the orchestrator and the chat reply extractor.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

import httpx
from pydantic import ValidationError

from .config import Settings
from .errors import (
    EngineRequestError,
    ExecutionFailed,
    ExecutionNotFound,
    WorkflowNotFound,
)
from .models.n8n import (
    CHAT_TRIGGER_TYPE,
    WEBHOOK_TYPE,
    Execution,
    ExecutionPayload,
    Workflow,
    WorkflowNode,
)
from .models.results import ExecutionResult, HealthStatus, LiveMonitoring, NodeResult
from .monitoring import node_results, summarize_executions

logger = logging.getLogger(__name__)

MONITORING_WINDOW = 50
_API_SHAPED_KEYS = ("event", "data", "customer", "service")
_CHAT_SHAPED_KEYS = ("message", "text", "input")


def _looks_like_api(payload: Optional[Mapping[str, Any]]) -> bool:
    if not payload:
        return False
    return any(payload.get(k) for k in _API_SHAPED_KEYS)


def select_webhook_node(
    workflow: Workflow,
    payload: Optional[Mapping[str, Any]] = None,
    trigger_node_id: Optional[str] = None,
) -> Optional[WorkflowNode]:
    """Pick the node a webhook invocation should target.

    Only nodes carrying a `webhookId` are candidates. An explicitly requested
    node wins; otherwise a chat trigger is preferred unless the payload is
    clearly API shaped, then a classic webhook, then any chat trigger, then
    the first candidate.
    """
    candidates = [n for n in workflow.nodes if n.webhookId]
    if not candidates:
        return None
    if trigger_node_id:
        for n in candidates:
            if n.id == trigger_node_id:
                return n
    chat = next((n for n in candidates if n.type == CHAT_TRIGGER_TYPE), None)
    if chat is not None and not _looks_like_api(payload):
        return chat
    classic = next((n for n in candidates if n.type == WEBHOOK_TYPE), None)
    return classic or chat or candidates[0]


def _http_method(node: WorkflowNode) -> str:
    param = node.parameters.get("httpMethod")
    if isinstance(param, list):
        if "POST" in param:
            return "POST"
        return str(param[0]).upper() if param else "POST"
    if isinstance(param, str) and param:
        return param.upper()
    return "POST"


def _manual_node_results(raw: Any) -> List[NodeResult]:
    """Node outcomes when n8n answered a manual run with the finished execution."""
    data = raw.get("data") if isinstance(raw, dict) else None
    if not isinstance(data, dict):
        return []
    try:
        payload = ExecutionPayload.model_validate(data)
    except ValidationError:
        logger.debug("Manual run response carries no readable runData")
        return []
    return node_results(payload.resultData.runData)


def decode_body(response: httpx.Response) -> Any:
    """Decode a response body as JSON, falling back to raw text."""
    text = response.text
    if not text:
        return {}
    try:
        return response.json()
    except ValueError:
        return text


class ExecutionGateway:
    """Async client for one n8n instance.

    The gateway owns a pooled `httpx.AsyncClient`; close it with `aclose()`
    or use the gateway as an async context manager. Tests inject an
    `httpx.MockTransport` through `transport`.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = settings
        self._api_root = settings.api_root
        self._live_base = settings.N8N_WEBHOOK_URL or ""
        self._test_base = settings.N8N_WEBHOOK_TEST_URL or ""
        self._webhook_timeout = settings.N8N_WEBHOOK_TIMEOUT
        self._api_headers: Dict[str, str] = {
            "Content-Type": "application/json",
            "User-Agent": settings.USER_AGENT,
        }
        if settings.N8N_API_KEY:
            self._api_headers["X-N8N-API-KEY"] = settings.N8N_API_KEY
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=settings.N8N_API_TIMEOUT, transport=transport
        )

    async def __aenter__(self) -> "ExecutionGateway":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------ API
    async def _api_request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
    ) -> Any:
        url = f"{self._api_root}{endpoint}"
        logger.debug("n8n API request %s %s params=%s", method, endpoint, params)
        try:
            resp = await self._client.request(
                method, url, params=params, json=json, headers=self._api_headers
            )
        except httpx.HTTPError as e:
            raise EngineRequestError(f"n8n API request failed: {e}") from e
        if resp.status_code >= 400:
            raise EngineRequestError(
                f"n8n API error: {resp.status_code} {resp.reason_phrase} - {resp.text[:500]}",
                upstream_status=resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as e:
            raise EngineRequestError(f"invalid JSON from n8n API {endpoint}: {e}") from e

    async def get_workflow(self, workflow_id: str) -> Workflow:
        """Fetch one workflow definition; any failure means not found."""
        try:
            raw = await self._api_request("GET", f"/workflows/{workflow_id}")
            return Workflow.model_validate(raw)
        except EngineRequestError as e:
            logger.info("Workflow %s unavailable: %s", workflow_id, e.message)
            raise WorkflowNotFound(workflow_id, detail=e.message) from e
        except ValidationError as e:
            logger.warning("Workflow %s has an unexpected shape: %s", workflow_id, e)
            raise WorkflowNotFound(workflow_id, detail=str(e)) from e

    async def get_workflows(self, limit: Optional[int] = None) -> List[Workflow]:
        params = {"limit": limit} if limit else None
        raw = await self._api_request("GET", "/workflows", params=params)
        items = raw.get("data", []) if isinstance(raw, dict) else raw
        return [Workflow.model_validate(w) for w in items or []]

    async def get_executions(self, workflow_id: Optional[str], limit: int = 20) -> List[Execution]:
        """List executions, most recent first."""
        params: Dict[str, Any] = {"limit": limit}
        if workflow_id:
            params["workflowId"] = workflow_id
        raw = await self._api_request("GET", "/executions", params=params)
        items = raw.get("data", []) if isinstance(raw, dict) else raw
        try:
            return [Execution.model_validate(e) for e in items or []]
        except ValidationError as e:
            raise EngineRequestError(f"unexpected execution list shape: {e}") from e

    async def get_execution(self, execution_id: str, *, include_data: bool = True) -> Execution:
        """Fetch one execution including its `runData`."""
        params = {"includeData": "true"} if include_data else None
        try:
            raw = await self._api_request("GET", f"/executions/{execution_id}", params=params)
        except EngineRequestError as e:
            if e.upstream_status == 404:
                raise ExecutionNotFound(execution_id, detail=e.message) from e
            raise
        try:
            return Execution.model_validate(raw)
        except ValidationError as e:
            raise EngineRequestError(f"unexpected execution shape: {e}") from e

    async def run_manual(
        self, workflow_id: str, payload: Optional[Mapping[str, Any]] = None
    ) -> ExecutionResult:
        """Start a workflow through its manual trigger."""
        try:
            raw = await self._api_request(
                "POST", f"/workflows/{workflow_id}/execute", json={"data": dict(payload or {})}
            )
        except EngineRequestError as e:
            raise ExecutionFailed(e.message, detail=e.detail) from e
        execution_id = raw.get("id") if isinstance(raw, dict) else None
        logger.info("Manual run of workflow %s started execution %s", workflow_id, execution_id)
        return ExecutionResult(
            executionId=str(execution_id) if execution_id is not None else None,
            data=raw,
            nodeResults=_manual_node_results(raw),
        )

    async def stop_execution(self, execution_id: str) -> bool:
        try:
            await self._api_request("POST", f"/executions/{execution_id}/stop")
        except EngineRequestError as e:
            logger.warning("Failed to stop execution %s: %s", execution_id, e.message)
            return False
        return True

    async def health_check(self) -> HealthStatus:
        try:
            await self._api_request("GET", "/workflows", params={"limit": 1})
        except EngineRequestError as e:
            return HealthStatus(healthy=False, status="unreachable", error=e.message)
        return HealthStatus(healthy=True, status="healthy")

    async def get_live_monitoring(self, workflow_id: str) -> LiveMonitoring:
        """Best-effort monitoring snapshot; read failures yield empty metrics."""
        try:
            executions = await self.get_executions(workflow_id, MONITORING_WINDOW)
        except EngineRequestError as e:
            logger.warning("Monitoring read failed for workflow %s: %s", workflow_id, e.message)
            executions = []
        return summarize_executions(workflow_id, executions)

    # ------------------------------------------------------------- Webhooks
    def webhook_bases(self, workflow: Workflow) -> List[str]:
        """Return configured webhook roots, preferred root first."""
        if workflow.active:
            ordered = [self._live_base, self._test_base]
        else:
            ordered = [self._test_base, self._live_base]
        return [b for b in ordered if b]

    async def post_webhook(
        self,
        workflow: Workflow,
        path: str,
        body: Optional[Mapping[str, Any]],
        *,
        method: str = "POST",
    ) -> httpx.Response:
        """Deliver a webhook call, walking the URL fallback on 404.

        Returns:
            The first non-404 response, or the last 404 when every URL
            shape missed.

        Raises:
            ExecutionFailed: no webhook root is configured, or a transport
                error occurred.
        """
        bases = self.webhook_bases(workflow)
        if not bases:
            raise ExecutionFailed(
                "N8N webhook base URLs not configured "
                "(set N8N_WEBHOOK_URL/N8N_WEBHOOK_TEST_URL or N8N_BASE_URL)"
            )
        urls = [u for base in bases for u in (f"{base}/{path}", f"{base}/{path}/chat")]
        content = None if method == "GET" else body
        *candidates, last = urls
        for url in candidates:
            response = await self._deliver(method, url, content)
            if response.status_code != 404:
                return response
            logger.info("Webhook %s answered 404; trying next URL shape", url)
        return await self._deliver(method, last, content)

    async def _deliver(
        self, method: str, url: str, content: Optional[Mapping[str, Any]]
    ) -> httpx.Response:
        logger.debug("Webhook %s %s", method, url)
        try:
            return await self._client.request(
                method,
                url,
                json=content,
                headers={"Content-Type": "application/json"},
                timeout=self._webhook_timeout,
            )
        except httpx.HTTPError as e:
            raise ExecutionFailed(f"Webhook request to {url} failed: {e}") from e

    async def run_webhook(
        self,
        workflow_id: str,
        payload: Optional[Mapping[str, Any]] = None,
        *,
        trigger_node_id: Optional[str] = None,
        workflow: Optional[Workflow] = None,
    ) -> ExecutionResult:
        """Invoke a workflow through one of its webhook-capable nodes.

        Args:
            workflow_id: Workflow to run.
            payload: JSON body to deliver; None sends a small test marker.
            trigger_node_id: Preferred node (must carry a webhookId).
            workflow: Already fetched definition, to avoid a second fetch.

        Raises:
            ExecutionFailed: no webhook node exists or n8n answered non-2xx.
        """
        if workflow is None:
            workflow = await self.get_workflow(workflow_id)
        node = select_webhook_node(workflow, payload, trigger_node_id)
        if node is None or not node.webhookId:
            raise ExecutionFailed("No webhook found in workflow")

        is_chat = node.type == CHAT_TRIGGER_TYPE
        path = None
        if not is_chat:
            raw_path = node.parameters.get("path")
            path = raw_path.strip("/") if isinstance(raw_path, str) and raw_path.strip("/") else None
        path = path or node.webhookId

        base_payload: Dict[str, Any] = (
            dict(payload) if payload is not None else {"test": True, "source": "executive-dashboard"}
        )
        enriched = dict(base_payload)
        if is_chat:
            inferred = ""
            for key in _CHAT_SHAPED_KEYS:
                value = base_payload.get(key)
                if isinstance(value, str) and value:
                    inferred = value
                    break
            enriched["chatInput"] = inferred or "Hello"
        enriched["timestamp"] = datetime.now(timezone.utc).isoformat()

        method = _http_method(node)
        logger.info(
            "Executing workflow %s via webhook node %s (%s %s)", workflow_id, node.name, method, path
        )
        response = await self.post_webhook(workflow, path, enriched, method=method)
        if response.status_code >= 400:
            reason = response.text[:500] or response.reason_phrase
            raise ExecutionFailed(
                f"{response.status_code} {reason}",
                detail={"status": response.status_code},
            )
        result = decode_body(response)

        execution_id: Optional[str] = None
        try:
            latest = await self.get_executions(workflow_id, 1)
            execution_id = latest[0].id if latest else None
        except EngineRequestError as e:
            logger.warning("Could not look up execution id for workflow %s: %s", workflow_id, e.message)
        return ExecutionResult(executionId=execution_id, data=result)


__all__ = ["ExecutionGateway", "decode_body", "select_webhook_node"]
