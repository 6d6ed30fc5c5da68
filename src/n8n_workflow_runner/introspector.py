"""Trigger classification for n8n workflow graphs.

Given a workflow definition, decide which of its nodes can start a run and
what kind of entry point each one is. Classification looks at the node
`type` string only and walks an ordered list of rules; the first rule whose
predicate matches wins. n8n can introduce new node types at any time, so an
unmatched node is simply not a trigger rather than an error.

Rule order (highest priority first):
    chat -> webhook -> telegram -> slack -> discord -> whatsapp -> email
    -> manual -> cron

Vendor triggers (telegram .. email) are fed by a bot session or mailbox held
by n8n, so they are never directly callable and are marked as requiring an
external client.

Design Invariants:
    - Pure: no I/O, no mutation of the input workflow.
    - Total: never raises for any node list.
    - Deterministic: the same workflow always yields an equal result.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Tuple

from .models.n8n import (
    CHAT_TRIGGER_TYPE,
    CRON_TYPES,
    MANUAL_TRIGGER_TYPE,
    WEBHOOK_TYPE,
    Workflow,
    WorkflowNode,
)
from .models.triggers import DEFAULT_PROMPT_FIELD, AnalyzedWorkflow, TriggerInfo, TriggerKind

__all__ = ["analyze_workflow", "classify_node", "TRIGGER_RULES"]

_PROMPT_PARAMETER_KEYS = ("promptField", "prompt", "promptVariable")


def _type_contains(*fragments: str) -> Callable[[WorkflowNode], bool]:
    lowered = tuple(f.lower() for f in fragments)

    def _match(node: WorkflowNode) -> bool:
        t = (node.type or "").lower()
        return any(f in t for f in lowered)

    return _match


def _type_is(*types: str) -> Callable[[WorkflowNode], bool]:
    def _match(node: WorkflowNode) -> bool:
        return node.type in types

    return _match


def _prompt_field(parameters: Dict[str, Any]) -> str:
    for key in _PROMPT_PARAMETER_KEYS:
        value = parameters.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return DEFAULT_PROMPT_FIELD


def _chat_info(node: WorkflowNode) -> Dict[str, Any]:
    return {
        "webhookId": node.webhookId,
        "isPublic": bool(node.parameters.get("public")),
        "requiresExternalClient": False,
        "promptField": _prompt_field(node.parameters),
    }


def _webhook_info(node: WorkflowNode) -> Dict[str, Any]:
    return {"webhookId": node.webhookId, "isPublic": True, "requiresExternalClient": False}


def _external_info(node: WorkflowNode) -> Dict[str, Any]:
    return {"isPublic": False, "requiresExternalClient": True}


def _plain_info(node: WorkflowNode) -> Dict[str, Any]:
    return {}


# (predicate, kind, extra-field builder); order is priority.
TRIGGER_RULES: Tuple[
    Tuple[Callable[[WorkflowNode], bool], TriggerKind, Callable[[WorkflowNode], Dict[str, Any]]],
    ...,
] = (
    (_type_is(CHAT_TRIGGER_TYPE), TriggerKind.CHAT, _chat_info),
    (_type_is(WEBHOOK_TYPE), TriggerKind.WEBHOOK, _webhook_info),
    (_type_contains("telegramtrigger"), TriggerKind.TELEGRAM, _external_info),
    (_type_contains("slacktrigger"), TriggerKind.SLACK, _external_info),
    (_type_contains("discordtrigger"), TriggerKind.DISCORD, _external_info),
    (
        _type_contains("whatsapptrigger", "meta-whatsapp-trigger"),
        TriggerKind.WHATSAPP,
        _external_info,
    ),
    (_type_contains("emailtrigger", "imaptrigger"), TriggerKind.EMAIL, _external_info),
    (_type_is(MANUAL_TRIGGER_TYPE), TriggerKind.MANUAL, _plain_info),
    (_type_is(*CRON_TYPES), TriggerKind.CRON, _plain_info),
)


def classify_node(node: WorkflowNode) -> Optional[TriggerInfo]:
    """Return trigger info for a node, or None when it is not a trigger."""
    for predicate, kind, build in TRIGGER_RULES:
        if predicate(node):
            return TriggerInfo(nodeId=node.id, nodeName=node.name, kind=kind, **build(node))
    return None


def analyze_workflow(workflow: Workflow) -> AnalyzedWorkflow:
    """Classify every node of a workflow and summarize its entry points.

    Args:
        workflow: Workflow definition as fetched from n8n.

    Returns:
        An `AnalyzedWorkflow` listing triggers in node order along with
        presence flags for chat, webhook and telegram triggers.
    """
    triggers: List[TriggerInfo] = []
    for node in workflow.nodes:
        info = classify_node(node)
        if info is not None:
            triggers.append(info)
    kinds = {t.kind for t in triggers}
    return AnalyzedWorkflow(
        workflowId=workflow.id,
        name=workflow.name,
        triggers=triggers,
        hasChat=TriggerKind.CHAT in kinds,
        hasWebhook=TriggerKind.WEBHOOK in kinds,
        hasTelegram=TriggerKind.TELEGRAM in kinds,
    )
