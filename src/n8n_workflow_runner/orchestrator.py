"""Execution orchestration for the "execute workflow" request.

The orchestrator is the only layer that decides between failing and falling
back, because only it knows both the caller's intent and which triggers the
workflow offers. Flow for one request:

    fetch workflow            -> WorkflowNotFound (404)
    analyze + resolve
    type == "webhook"         -> webhook required (400) -> run_webhook
    type == "manual"          -> manual required (400)  -> run_manual
    type == "test" / absent:
        chat    & chat trigger     -> ChatReplyExtractor
        webhook & webhook trigger  -> run_webhook, on failure run_manual if
                                      the workflow has a manual trigger
        manual  & manual trigger   -> run_manual
        otherwise                  -> BadRequest (400)

Webhook is tried before manual because it is the production entry point;
manual is only a safety net for an unreachable webhook. There is no fallback
after a manual failure.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Mapping, Optional

from .chat import CancelCheck, ChatReplyExtractor
from .config import Settings
from .errors import BadRequest, ExecutionFailed
from .gateway import ExecutionGateway
from .introspector import analyze_workflow
from .models.n8n import Workflow
from .models.results import (
    ChatRequest,
    ExecuteWorkflowRequest,
    ExecutionResult,
    ExecutionType,
    OrchestrationResult,
)
from .models.triggers import AnalyzedWorkflow, TriggerKind
from .resolver import chat_text, resolve_trigger

logger = logging.getLogger(__name__)

DEFAULT_CHAT_MESSAGE = "Hallo"
WEBHOOK_FAILED = "Webhook execution failed"
MANUAL_FAILED = "Manual execution failed"

__all__ = ["DEFAULT_CHAT_MESSAGE", "ExecutionOrchestrator"]


def _wrap(prefix: str, error: ExecutionFailed) -> ExecutionFailed:
    return ExecutionFailed(f"{prefix}: {error.message}", detail=error.detail)


def _from_execution(kind: TriggerKind, result: ExecutionResult, *, fallback: bool = False) -> OrchestrationResult:
    return OrchestrationResult(
        triggerKind=kind,
        executionId=result.executionId,
        data=result.data,
        nodeResults=result.nodeResults,
        fallbackUsed=fallback,
    )


class ExecutionOrchestrator:
    def __init__(
        self,
        gateway: ExecutionGateway,
        settings: Settings,
        *,
        chat: Optional[ChatReplyExtractor] = None,
    ):
        self._gateway = gateway
        self._settings = settings
        self._chat = chat or ChatReplyExtractor(gateway, settings)

    @property
    def gateway(self) -> ExecutionGateway:
        return self._gateway

    @property
    def chat(self) -> ChatReplyExtractor:
        return self._chat

    async def execute(
        self,
        workflow_id: str,
        request: ExecuteWorkflowRequest,
        *,
        is_cancelled: Optional[CancelCheck] = None,
    ) -> OrchestrationResult:
        """Run a workflow according to the request.

        Raises:
            WorkflowNotFound: the workflow could not be fetched.
            BadRequest: the requested or resolved trigger is unavailable.
            ExecutionFailed: every attempted trigger failed upstream.
            ReplyTimeout: a chat trigger produced no reply in time.
        """
        started = time.monotonic()
        result = await self._dispatch(workflow_id, request, is_cancelled)
        return result.model_copy(
            update={"duration": round((time.monotonic() - started) * 1000)}
        )

    async def _dispatch(
        self,
        workflow_id: str,
        request: ExecuteWorkflowRequest,
        is_cancelled: Optional[CancelCheck],
    ) -> OrchestrationResult:
        workflow = await self._gateway.get_workflow(workflow_id)
        analysis = analyze_workflow(workflow)
        payload = request.payload or {}

        if request.type is ExecutionType.WEBHOOK:
            if not analysis.has_invocable_webhook:
                raise BadRequest("No webhook trigger found")
            try:
                result = await self._gateway.run_webhook(
                    workflow_id, payload, trigger_node_id=request.triggerNodeId, workflow=workflow
                )
            except ExecutionFailed as e:
                raise _wrap(WEBHOOK_FAILED, e) from e
            return _from_execution(TriggerKind.WEBHOOK, result)
        if request.type is ExecutionType.MANUAL:
            if not analysis.has_manual:
                raise BadRequest("No manual trigger found")
            return await self._run_manual(workflow_id, payload)

        resolved = resolve_trigger(
            workflow,
            analysis,
            explicit_type=request.triggerType,
            explicit_node_id=request.triggerNodeId,
            payload=payload,
        )
        logger.info(
            "Workflow %s resolved to %s trigger (%s)", workflow_id, resolved.kind.value, resolved.reason
        )
        node_id = resolved.node.nodeId if resolved.node else request.triggerNodeId

        if resolved.kind is TriggerKind.CHAT and analysis.has_invocable_chat:
            return await self._run_chat(workflow, analysis, payload, node_id, is_cancelled)
        if resolved.kind is TriggerKind.WEBHOOK and analysis.has_invocable_webhook:
            return await self._run_webhook_with_fallback(workflow, analysis, payload, node_id)
        if resolved.kind is TriggerKind.MANUAL and analysis.has_manual:
            return await self._run_manual(workflow_id, payload)
        raise BadRequest("No triggerable entrypoint (chat/webhook/manual) found")

    async def _run_chat(
        self,
        workflow: Workflow,
        analysis: AnalyzedWorkflow,
        payload: Mapping[str, Any],
        node_id: Optional[str],
        is_cancelled: Optional[CancelCheck],
    ) -> OrchestrationResult:
        reply = await self._chat.send(
            ChatRequest(
                workflowId=workflow.id,
                message=chat_text(payload) or DEFAULT_CHAT_MESSAGE,
                triggerNodeId=node_id,
                waitForResultMs=self._settings.EXECUTE_CHAT_TIMEOUT_MS,
            ),
            workflow=workflow,
            analysis=analysis,
            is_cancelled=is_cancelled,
        )
        return OrchestrationResult(
            triggerKind=TriggerKind.CHAT,
            executionId=reply.metadata.executionId,
            data=reply.model_dump(mode="json"),
        )

    async def _run_webhook_with_fallback(
        self,
        workflow: Workflow,
        analysis: AnalyzedWorkflow,
        payload: Mapping[str, Any],
        node_id: Optional[str],
    ) -> OrchestrationResult:
        try:
            result = await self._gateway.run_webhook(
                workflow.id, payload, trigger_node_id=node_id, workflow=workflow
            )
            return _from_execution(TriggerKind.WEBHOOK, result)
        except ExecutionFailed as webhook_error:
            if not analysis.has_manual:
                raise _wrap(WEBHOOK_FAILED, webhook_error) from webhook_error
            logger.warning(
                "Webhook run of workflow %s failed (%s); falling back to manual trigger",
                workflow.id,
                webhook_error.message,
            )
            try:
                result = await self._gateway.run_manual(workflow.id, payload)
            except ExecutionFailed as manual_error:
                raise ExecutionFailed(
                    f"Execution failed. Webhook: {webhook_error.message}. "
                    f"Manual: {manual_error.message}",
                    detail={"webhook": webhook_error.detail, "manual": manual_error.detail},
                ) from manual_error
            return _from_execution(TriggerKind.MANUAL, result, fallback=True)

    async def _run_manual(self, workflow_id: str, payload: Mapping[str, Any]) -> OrchestrationResult:
        try:
            result = await self._gateway.run_manual(workflow_id, payload)
        except ExecutionFailed as e:
            raise _wrap(MANUAL_FAILED, e) from e
        return _from_execution(TriggerKind.MANUAL, result)
