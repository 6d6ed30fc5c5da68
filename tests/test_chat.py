from __future__ import annotations

import pytest
from conftest import BASE_URL, make_settings, node, run_data_execution, workflow

from n8n_workflow_runner.chat import ChatReplyExtractor, build_chat_payload, select_chat_trigger
from n8n_workflow_runner.errors import BadRequest, ExecutionFailed, ReplyCancelled, ReplyTimeout
from n8n_workflow_runner.gateway import ExecutionGateway
from n8n_workflow_runner.introspector import analyze_workflow
from n8n_workflow_runner.models.n8n import CHAT_TRIGGER_TYPE, MANUAL_TRIGGER_TYPE, WEBHOOK_TYPE, Workflow
from n8n_workflow_runner.models.results import ChatRequest

pytestmark = pytest.mark.asyncio

TEST = f"{BASE_URL}/webhook-test"


async def _send(fake, request: ChatRequest, *, is_cancelled=None, **overrides):
    settings = make_settings(**overrides)
    async with ExecutionGateway(settings, transport=fake.transport) as gateway:
        extractor = ChatReplyExtractor(gateway, settings, session_id_factory=lambda: "exec-fixed")
        return await extractor.send(request, is_cancelled=is_cancelled)


def _chat_workflow(fake, **parameters):
    fake.add_workflow(
        workflow("wf-chat", node("Chat", CHAT_TRIGGER_TYPE, webhook_id="chat-1", **parameters))
    )


async def test_reply_found_after_chat_suffix_fallback(fake_n8n):
    _chat_workflow(fake_n8n)
    fake_n8n.webhooks[f"{TEST}/chat-1/chat"] = (200, {"message": "Workflow was started"})
    fake_n8n.executions = [{"id": 41, "workflowId": "wf-chat", "status": "success"}]
    fake_n8n.execution_details["41"] = run_data_execution(
        "41", "wf-chat", {"AI Agent": [{"response": "Guten Tag"}]}
    )

    reply = await _send(fake_n8n, ChatRequest(workflowId="wf-chat", message="Hallo", waitForResultMs=2000))

    assert reply.response == "Guten Tag"
    assert reply.status == "completed"
    assert reply.metadata.executionId == "41"
    assert reply.metadata.sessionId == "exec-fixed"
    assert [url for _m, url, _b in fake_n8n.webhook_calls()] == [
        f"{TEST}/chat-1",
        f"{TEST}/chat-1/chat",
    ]


async def test_missing_responder_times_out_with_diagnostic(fake_n8n):
    _chat_workflow(fake_n8n)
    fake_n8n.webhooks[f"{TEST}/chat-1"] = (200, {})
    fake_n8n.executions = [{"id": 42, "workflowId": "wf-chat", "status": "running"}]
    fake_n8n.execution_details["42"] = run_data_execution(
        "42", "wf-chat", {"Chat": [{"chatInput": 5}]}, status="running"
    )

    with pytest.raises(ReplyTimeout) as exc:
        await _send(fake_n8n, ChatRequest(workflowId="wf-chat", message="Hallo", waitForResultMs=1000))

    assert "1000ms" in exc.value.message
    assert "Respond to Webhook" in exc.value.message
    assert exc.value.status_code == 500
    assert not isinstance(exc.value, ReplyCancelled)


async def test_no_poll_starts_after_the_deadline(fake_n8n):
    _chat_workflow(fake_n8n)
    fake_n8n.webhooks[f"{TEST}/chat-1"] = (200, {})
    fake_n8n.executions = [{"id": 43, "workflowId": "wf-chat", "status": "running"}]
    fake_n8n.execution_details["43"] = run_data_execution("43", "wf-chat", {}, status="running")

    with pytest.raises(ReplyTimeout):
        await _send(
            fake_n8n,
            ChatRequest(workflowId="wf-chat", message="Hallo", waitForResultMs=1000),
            CHAT_POLL_INTERVAL_MS=700,
        )

    detail_fetches = [url for _m, url, _b in fake_n8n.calls if url.endswith("/executions/43")]
    # t=0 and t=0.7s; a third poll would start at 1.4s
    assert len(detail_fetches) == 2


async def test_prompt_field_is_used_in_payload(fake_n8n):
    _chat_workflow(fake_n8n, promptField="question")
    fake_n8n.webhooks[f"{TEST}/chat-1"] = (200, {"output": "42"})

    reply = await _send(
        fake_n8n, ChatRequest(workflowId="wf-chat", message="What is the answer?", userId="u-1")
    )

    assert reply.response == "42"
    _method, _url, body = fake_n8n.webhook_calls()[0]
    assert body["question"] == "What is the answer?"
    assert body["message"] == body["text"] == body["input"] == "What is the answer?"
    assert body["user"] == "u-1"
    assert body["sessionId"] == "exec-fixed"
    assert body["source"] == "automation-dashboard"


async def test_immediate_reply_skips_polling(fake_n8n):
    _chat_workflow(fake_n8n)
    fake_n8n.webhooks[f"{TEST}/chat-1"] = (200, "Plain answer")

    reply = await _send(fake_n8n, ChatRequest(workflowId="wf-chat", message="Hi"))

    assert reply.response == "Plain answer"
    assert reply.raw == "Plain answer"
    assert not any("/api/v1/executions" in url for _m, url, _b in fake_n8n.calls)


async def test_terminal_execution_without_text_stops_early(fake_n8n):
    _chat_workflow(fake_n8n)
    fake_n8n.webhooks[f"{TEST}/chat-1"] = (200, {})
    fake_n8n.executions = [{"id": 43, "workflowId": "wf-chat", "status": "error"}]
    fake_n8n.execution_details["43"] = run_data_execution(
        "43", "wf-chat", {"Chat": [{"count": 1}]}, status="error"
    )

    with pytest.raises(ReplyTimeout):
        await _send(fake_n8n, ChatRequest(workflowId="wf-chat", message="Hi", waitForResultMs=5000))

    detail_reads = [url for _m, url, _b in fake_n8n.calls if url.endswith("/executions/43")]
    assert len(detail_reads) == 1


async def test_correlation_ignores_foreign_executions(fake_n8n):
    _chat_workflow(fake_n8n)
    fake_n8n.webhooks[f"{TEST}/chat-1"] = (200, {})
    fake_n8n.executions = [{"id": 44, "workflowId": "wf-chat", "status": "success"}]
    fake_n8n.execution_details["44"] = run_data_execution(
        "44", "wf-chat", {"Chat": [{"sessionId": "exec-other"}], "AI Agent": [{"output": "not yours"}]}
    )

    with pytest.raises(ReplyTimeout):
        await _send(
            fake_n8n,
            ChatRequest(workflowId="wf-chat", message="Hi", waitForResultMs=300),
            CHAT_CORRELATE_SESSION=True,
        )

    fake_n8n.calls.clear()
    fake_n8n.execution_details["44"] = run_data_execution(
        "44", "wf-chat", {"Chat": [{"sessionId": "exec-fixed"}], "AI Agent": [{"output": "yours"}]}
    )
    reply = await _send(
        fake_n8n,
        ChatRequest(workflowId="wf-chat", message="Hi", waitForResultMs=300),
        CHAT_CORRELATE_SESSION=True,
    )
    assert reply.response == "yours"


async def test_cancellation_stops_polling(fake_n8n):
    _chat_workflow(fake_n8n)
    fake_n8n.webhooks[f"{TEST}/chat-1"] = (200, {})

    async def _disconnected() -> bool:
        return True

    with pytest.raises(ReplyCancelled):
        await _send(
            fake_n8n,
            ChatRequest(workflowId="wf-chat", message="Hi", waitForResultMs=5000),
            is_cancelled=_disconnected,
        )
    assert not any("/api/v1/executions" in url for _m, url, _b in fake_n8n.calls)


async def test_poll_read_errors_are_retried(fake_n8n):
    _chat_workflow(fake_n8n)
    fake_n8n.webhooks[f"{TEST}/chat-1"] = (200, {})
    # Listed execution whose detail is missing: every iteration fails to read it.
    fake_n8n.executions = [{"id": 45, "workflowId": "wf-chat", "status": "success"}]

    with pytest.raises(ReplyTimeout):
        await _send(fake_n8n, ChatRequest(workflowId="wf-chat", message="Hi", waitForResultMs=200))

    detail_reads = [url for _m, url, _b in fake_n8n.calls if url.endswith("/executions/45")]
    assert len(detail_reads) > 1


async def test_webhook_rejection(fake_n8n):
    _chat_workflow(fake_n8n)
    fake_n8n.webhooks[f"{TEST}/chat-1"] = (500, "agent crashed")

    with pytest.raises(ExecutionFailed) as exc:
        await _send(fake_n8n, ChatRequest(workflowId="wf-chat", message="Hi"))
    assert exc.value.message == "AI Agent webhook failed: agent crashed"


async def test_no_chat_capable_trigger(fake_n8n):
    fake_n8n.add_workflow(workflow("wf-m", node("Manual", MANUAL_TRIGGER_TYPE)))
    with pytest.raises(BadRequest, match="No suitable trigger found for chat"):
        await _send(fake_n8n, ChatRequest(workflowId="wf-m", message="Hi"))


async def test_select_chat_trigger_preferences():
    wf = Workflow.model_validate(
        workflow(
            "wf-1",
            node("Hook", WEBHOOK_TYPE, id_="h", webhook_id="h1"),
            node("Chat", CHAT_TRIGGER_TYPE, id_="c", webhook_id="c1"),
            node("Telegram", "n8n-nodes-base.telegramTrigger", id_="t", webhook_id="t1"),
        )
    )
    analysis = analyze_workflow(wf)
    assert select_chat_trigger(analysis).nodeId == "c"
    assert select_chat_trigger(analysis, "h").nodeId == "h"
    assert select_chat_trigger(analysis, "t").nodeId == "c"


async def test_build_chat_payload_defaults_prompt_field():
    analysis = analyze_workflow(
        Workflow.model_validate(workflow("wf-1", node("Chat", CHAT_TRIGGER_TYPE, webhook_id="c1")))
    )
    payload = build_chat_payload(
        analysis.triggers[0], "Hallo", user="u", timestamp="t", source="s", session_id="exec-1"
    )
    assert payload["chatInput"] == "Hallo"
    assert payload["sessionId"] == "exec-1"
