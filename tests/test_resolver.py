from __future__ import annotations

from conftest import node, workflow

from n8n_workflow_runner.introspector import analyze_workflow
from n8n_workflow_runner.models.n8n import (
    CHAT_TRIGGER_TYPE,
    MANUAL_TRIGGER_TYPE,
    WEBHOOK_TYPE,
    Workflow,
)
from n8n_workflow_runner.models.triggers import TriggerKind
from n8n_workflow_runner.resolver import chat_text, resolve_trigger


def _resolve(wf_dict, **kwargs):
    wf = Workflow.model_validate(wf_dict)
    return resolve_trigger(wf, analyze_workflow(wf), **kwargs)


WEBHOOK_AND_MANUAL = workflow(
    "wf-1",
    node("Hook", WEBHOOK_TYPE, webhook_id="hook-1", path="orders"),
    node("Manual", MANUAL_TRIGGER_TYPE),
)


def test_explicit_chat_without_chat_trigger_stays_chat():
    resolved = _resolve(WEBHOOK_AND_MANUAL, explicit_type="chat", payload={})
    assert resolved.kind is TriggerKind.CHAT
    assert resolved.node is None
    assert resolved.reason == "explicit:chat"


def test_explicit_type_uses_requested_node():
    wf = workflow(
        "wf-2",
        node("Hook A", WEBHOOK_TYPE, id_="a", webhook_id="wa"),
        node("Hook B", WEBHOOK_TYPE, id_="b", webhook_id="wb"),
    )
    resolved = _resolve(wf, explicit_type="webhook", explicit_node_id="b")
    assert resolved.kind is TriggerKind.WEBHOOK
    assert resolved.node is not None and resolved.node.nodeId == "b"
    assert resolved.reason == "explicit:webhook#b"


def test_explicit_type_beats_chat_payload():
    resolved = _resolve(WEBHOOK_AND_MANUAL, explicit_type="manual", payload={"message": "hi"})
    assert resolved.kind is TriggerKind.MANUAL
    assert resolved.node is not None and resolved.node.nodeName == "Manual"


def test_invalid_explicit_type_is_unknown():
    resolved = _resolve(WEBHOOK_AND_MANUAL, explicit_type="carrier-pigeon")
    assert resolved.kind is TriggerKind.UNKNOWN


def test_message_payload_resolves_to_chat():
    resolved = _resolve(WEBHOOK_AND_MANUAL, payload={"message": "hello"})
    assert resolved.kind is TriggerKind.CHAT
    assert resolved.reason == "heuristic:chat"


def test_chat_payload_picks_chat_node_when_present():
    wf = workflow(
        "wf-3",
        node("Hook", WEBHOOK_TYPE, webhook_id="hook-1"),
        node("Chat", CHAT_TRIGGER_TYPE, webhook_id="chat-1"),
    )
    resolved = _resolve(wf, payload={"chatInput": "Hallo"})
    assert resolved.kind is TriggerKind.CHAT
    assert resolved.node is not None and resolved.node.nodeName == "Chat"


def test_empty_payload_prefers_webhook_over_manual():
    resolved = _resolve(WEBHOOK_AND_MANUAL, payload={})
    assert resolved.kind is TriggerKind.WEBHOOK
    assert resolved.node is not None and resolved.node.nodeName == "Hook"


def test_manual_only_workflow():
    resolved = _resolve(workflow("wf-4", node("Manual", MANUAL_TRIGGER_TYPE)))
    assert resolved.kind is TriggerKind.MANUAL


def test_nothing_triggerable_is_unknown():
    resolved = _resolve(workflow("wf-5", node("Cron", "n8n-nodes-base.cron")), payload={})
    assert resolved.kind is TriggerKind.UNKNOWN
    assert resolved.node is None


def test_blank_message_is_not_chat():
    assert chat_text({"message": "   ", "text": ""}) is None
    assert chat_text({"text": 42, "chatInput": "hey"}) == "hey"
    assert chat_text(None) is None
