"""Choose which trigger an invocation should go through.

Precedence:
    1. An explicit trigger type from the caller always wins, even when the
       workflow has no such trigger (the caller checks availability).
    2. A payload carrying conversational text (`message`, `text` or
       `chatInput`) resolves to chat.
    3. Otherwise the workflow's structure decides: webhook, then manual,
       then `unknown`.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional

from .models.n8n import Workflow
from .models.triggers import AnalyzedWorkflow, ResolvedTrigger, TriggerKind

__all__ = ["CHAT_TEXT_KEYS", "chat_text", "looks_like_chat", "resolve_trigger"]

CHAT_TEXT_KEYS = ("message", "text", "chatInput")


def chat_text(payload: Optional[Mapping[str, Any]]) -> Optional[str]:
    """Return the first non-blank conversational string in a payload."""
    if not payload:
        return None
    for key in CHAT_TEXT_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def looks_like_chat(payload: Optional[Mapping[str, Any]]) -> bool:
    return chat_text(payload) is not None


def resolve_trigger(
    workflow: Workflow,
    analysis: AnalyzedWorkflow,
    *,
    explicit_type: Optional[str] = None,
    explicit_node_id: Optional[str] = None,
    payload: Optional[Mapping[str, Any]] = None,
) -> ResolvedTrigger:
    """Resolve the trigger kind (and node, when one exists) for a request.

    Args:
        workflow: The workflow being invoked. Only its analysis is consulted
            today; it is accepted so resolution can look at raw node data
            without changing call sites.
        analysis: Result of `analyze_workflow` for the same workflow.
        explicit_type: Trigger kind requested by the caller, if any.
        explicit_node_id: Specific trigger node requested by the caller.
        payload: The invocation payload.

    Returns:
        A `ResolvedTrigger`. Never raises; an unresolvable request yields
        kind `unknown`.
    """
    if explicit_type:
        try:
            kind = TriggerKind(explicit_type)
        except ValueError:
            kind = TriggerKind.UNKNOWN
        node = analysis.find_node(explicit_node_id) or analysis.first(kind)
        suffix = f"#{explicit_node_id}" if explicit_node_id else ""
        return ResolvedTrigger(kind=kind, node=node, reason=f"explicit:{kind.value}{suffix}")

    if looks_like_chat(payload):
        return ResolvedTrigger(
            kind=TriggerKind.CHAT, node=analysis.first(TriggerKind.CHAT), reason="heuristic:chat"
        )

    if analysis.hasWebhook:
        return ResolvedTrigger(
            kind=TriggerKind.WEBHOOK,
            node=analysis.first(TriggerKind.WEBHOOK),
            reason="analysis:webhook",
        )
    if analysis.has_manual:
        return ResolvedTrigger(
            kind=TriggerKind.MANUAL,
            node=analysis.first(TriggerKind.MANUAL),
            reason="analysis:manual",
        )
    return ResolvedTrigger(kind=TriggerKind.UNKNOWN, reason="fallback:unknown")
