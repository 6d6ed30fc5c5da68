"""Synchronous-feeling chat replies on top of asynchronous n8n executions.

Sending a message to a chat trigger only starts an execution; the reply is
written to n8n's execution log when (and if) the workflow produces one. The
`ChatReplyExtractor` bridges this:

Send phase:
    1. Pick the trigger: the requested node (chat or webhook with a
       webhookId), else the first chat trigger, else the first webhook.
    2. Build a payload carrying the message under the trigger's
       `promptField` plus the generic `message`/`text`/`input` aliases,
       caller identity, a timestamp and a fresh `sessionId`.
    3. POST through `ExecutionGateway.post_webhook` (four-way URL fallback).
       A non-2xx answer raises `ExecutionFailed` with the upstream body.

Receive phase:
    If the webhook response already carries reply text it is returned
    directly. Otherwise the latest execution of the workflow is polled with
    tenacity (`stop_before_delay` deadline, so no poll starts past it;
    `wait_fixed` interval):
    latest execution -> execution detail -> reply extractor. A terminal
    execution without text ends polling early. Nothing found means
    `ReplyTimeout`, whose message points at the usual cause: the workflow has
    no "Respond to Webhook" node.

Known limitation:
    "Latest execution" is shared between concurrent senders. With
    `CHAT_CORRELATE_SESSION` enabled only executions echoing the generated
    sessionId are accepted; otherwise recency is all there is.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple
from uuid import uuid4

from tenacity import AsyncRetrying, retry_if_exception_type, stop_before_delay, wait_fixed

from .config import Settings
from .errors import (
    BadRequest,
    EngineRequestError,
    ExecutionFailed,
    NotFound,
    ReplyCancelled,
    ReplyTimeout,
)
from .gateway import ExecutionGateway, decode_body
from .introspector import analyze_workflow
from .models.n8n import Execution, Workflow
from .models.results import ChatReply, ChatReplyMetadata, ChatRequest
from .models.triggers import DEFAULT_PROMPT_FIELD, AnalyzedWorkflow, TriggerInfo, TriggerKind
from .reply_extraction import (
    ReplyExtractor,
    default_reply_extractor,
    execution_mentions,
    immediate_reply,
)

logger = logging.getLogger(__name__)

CancelCheck = Callable[[], Awaitable[bool]]

__all__ = [
    "CancelCheck",
    "ChatReplyExtractor",
    "build_chat_payload",
    "select_chat_trigger",
]


class _ReplyPending(Exception):
    """Raised inside a poll attempt when no reply is available yet."""


def select_chat_trigger(
    analysis: AnalyzedWorkflow, trigger_node_id: Optional[str] = None
) -> Optional[TriggerInfo]:
    requested = analysis.find_node(trigger_node_id)
    if (
        requested is not None
        and requested.kind in (TriggerKind.CHAT, TriggerKind.WEBHOOK)
        and requested.invocable
    ):
        return requested
    return analysis.first(TriggerKind.CHAT, invocable=True) or analysis.first(
        TriggerKind.WEBHOOK, invocable=True
    )


def build_chat_payload(
    trigger: TriggerInfo,
    message: str,
    *,
    user: str,
    timestamp: str,
    source: str,
    session_id: str,
) -> Dict[str, Any]:
    """Build the webhook body for a chat message.

    The message is sent under every key a chat workflow commonly reads; the
    trigger's own `promptField` is always one of them.
    """
    return {
        (trigger.promptField or DEFAULT_PROMPT_FIELD): message,
        "message": message,
        "text": message,
        "input": message,
        "user": user,
        "timestamp": timestamp,
        "source": source,
        "sessionId": session_id,
    }


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ChatReplyExtractor:
    """Deliver a chat message to a workflow and wait for its textual reply."""

    def __init__(
        self,
        gateway: ExecutionGateway,
        settings: Settings,
        *,
        extractor: ReplyExtractor = default_reply_extractor,
        session_id_factory: Callable[[], str] = lambda: f"exec-{uuid4().hex}",
    ):
        self._gateway = gateway
        self._settings = settings
        self._extractor = extractor
        self._new_session_id = session_id_factory
        self._poll_interval = settings.CHAT_POLL_INTERVAL_MS / 1000
        self._correlate = settings.CHAT_CORRELATE_SESSION

    async def send(
        self,
        request: ChatRequest,
        *,
        workflow: Optional[Workflow] = None,
        analysis: Optional[AnalyzedWorkflow] = None,
        is_cancelled: Optional[CancelCheck] = None,
    ) -> ChatReply:
        """Send `request.message` and return the workflow's reply.

        Args:
            request: Chat request; `waitForResultMs` overrides the default
                budget from `CHAT_REPLY_TIMEOUT_MS`.
            workflow: Already fetched definition (fetched when omitted).
            analysis: Already computed analysis of `workflow`.
            is_cancelled: Optional async check polled once per iteration;
                returning True abandons the wait.

        Raises:
            WorkflowNotFound: the workflow does not exist.
            BadRequest: no chat or webhook trigger with a webhookId.
            ExecutionFailed: n8n rejected the message.
            ReplyTimeout: no reply within the budget.
        """
        if workflow is None:
            workflow = await self._gateway.get_workflow(request.workflowId)
        if analysis is None:
            analysis = analyze_workflow(workflow)
        trigger = select_chat_trigger(analysis, request.triggerNodeId)
        if trigger is None or not trigger.webhookId:
            raise BadRequest("No suitable trigger found for chat")

        session_id = self._new_session_id()
        body = build_chat_payload(
            trigger,
            request.message,
            user=request.userId or self._settings.CHAT_DEFAULT_USER,
            timestamp=request.timestamp or _now_iso(),
            source=self._settings.CHAT_SOURCE,
            session_id=session_id,
        )
        logger.info(
            "Sending chat message to workflow %s via %s trigger %s (session %s)",
            workflow.id,
            trigger.kind.value,
            trigger.nodeName,
            session_id,
        )
        response = await self._gateway.post_webhook(workflow, trigger.webhookId, body)
        if response.status_code >= 400:
            reason = response.text or response.reason_phrase or "Unknown error"
            raise ExecutionFailed(
                f"AI Agent webhook failed: {reason}", detail={"status": response.status_code}
            )
        raw = decode_body(response)

        wait_ms = (
            request.waitForResultMs
            if request.waitForResultMs is not None
            else self._settings.CHAT_REPLY_TIMEOUT_MS
        )
        text = immediate_reply(raw)
        execution_id: Optional[str] = None
        if text is None:
            text, execution_id = await self.wait_for_reply(
                workflow.id,
                wait_ms,
                session_id=session_id if self._correlate else None,
                is_cancelled=is_cancelled,
            )
        else:
            logger.debug("Workflow %s answered inline; skipping execution polling", workflow.id)
        if text is None:
            raise ReplyTimeout(
                f"AI Agent did not respond within {wait_ms}ms. Please check the N8N "
                'workflow has a "Respond to Webhook" node.',
                detail={"executionId": execution_id, "sessionId": session_id},
            )
        return ChatReply(
            response=text,
            metadata=ChatReplyMetadata(
                executionId=execution_id,
                workflowName=workflow.name,
                sessionId=session_id,
                timestamp=_now_iso(),
            ),
            raw=raw,
        )

    async def wait_for_reply(
        self,
        workflow_id: str,
        wait_ms: int,
        *,
        session_id: Optional[str] = None,
        is_cancelled: Optional[CancelCheck] = None,
    ) -> Tuple[Optional[str], Optional[str]]:
        """Poll execution history until a reply appears or time runs out.

        Returns:
            `(reply_text, execution_id)`; `reply_text` is None when the
            deadline passed or the latest execution finished without text.

        Raises:
            ReplyCancelled: `is_cancelled` reported True.
        """
        if wait_ms <= 0:
            return None, None
        seen: Dict[str, Optional[str]] = {"execution_id": None}

        async def _attempt() -> Optional[str]:
            if is_cancelled is not None and await is_cancelled():
                raise ReplyCancelled(
                    "Chat reply wait abandoned: caller disconnected",
                    detail={"executionId": seen["execution_id"]},
                )
            execution = await self._latest_execution(workflow_id)
            if execution is None:
                raise _ReplyPending()
            if session_id is not None and not execution_mentions(execution, session_id):
                raise _ReplyPending()
            seen["execution_id"] = execution.id
            text = self._extractor(execution)
            if text is not None:
                return text
            if execution.is_terminal:
                logger.info(
                    "Execution %s finished (%s) without reply text", execution.id, execution.status
                )
                return None
            raise _ReplyPending()

        retrying = AsyncRetrying(
            stop=stop_before_delay(wait_ms / 1000),
            wait=wait_fixed(self._poll_interval),
            retry=retry_if_exception_type(_ReplyPending),
            reraise=True,
        )
        text: Optional[str] = None
        try:
            async for attempt in retrying:
                with attempt:
                    text = await _attempt()
        except _ReplyPending:
            logger.info("No reply from workflow %s within %sms", workflow_id, wait_ms)
            return None, seen["execution_id"]
        return text, seen["execution_id"]

    async def _latest_execution(self, workflow_id: str) -> Optional[Execution]:
        try:
            latest = await self._gateway.get_executions(workflow_id, 1)
            if not latest:
                return None
            return await self._gateway.get_execution(latest[0].id)
        except (EngineRequestError, NotFound) as e:
            logger.debug("Execution poll for workflow %s failed: %s", workflow_id, e.message)
            return None
