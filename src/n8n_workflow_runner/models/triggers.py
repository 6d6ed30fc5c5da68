"""Derived trigger models produced by introspection and resolution.

Instances are frozen: a workflow can change between two requests, so these
values are rebuilt from a fresh workflow fetch every time instead of being
patched or cached.
"""
from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class TriggerKind(str, Enum):
    CHAT = "chat"
    WEBHOOK = "webhook"
    TELEGRAM = "telegram"
    SLACK = "slack"
    DISCORD = "discord"
    WHATSAPP = "whatsapp"
    EMAIL = "email"
    MANUAL = "manual"
    CRON = "cron"
    UNKNOWN = "unknown"


DEFAULT_PROMPT_FIELD = "chatInput"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, use_enum_values=False)


class TriggerInfo(_Frozen):
    """A node able to start a workflow run."""

    nodeId: str
    nodeName: str
    kind: TriggerKind
    webhookId: Optional[str] = None
    isPublic: Optional[bool] = None
    requiresExternalClient: Optional[bool] = None
    # Chat triggers only: JSON key the outbound message is sent under.
    promptField: Optional[str] = None

    @property
    def invocable(self) -> bool:
        """True when the trigger can be reached over a webhook URL."""
        return bool(self.webhookId)


class AnalyzedWorkflow(_Frozen):
    """Summary of a workflow's entry points."""

    workflowId: str
    name: str
    triggers: List[TriggerInfo] = []
    hasChat: bool = False
    hasWebhook: bool = False
    hasTelegram: bool = False

    @property
    def has_manual(self) -> bool:
        return any(t.kind is TriggerKind.MANUAL for t in self.triggers)

    @property
    def has_invocable_chat(self) -> bool:
        return self.first(TriggerKind.CHAT, invocable=True) is not None

    @property
    def has_invocable_webhook(self) -> bool:
        return self.first(TriggerKind.WEBHOOK, invocable=True) is not None

    def first(self, kind: TriggerKind, *, invocable: bool = False) -> Optional[TriggerInfo]:
        for t in self.triggers:
            if t.kind is kind and (not invocable or t.invocable):
                return t
        return None

    def find_node(self, node_id: Optional[str]) -> Optional[TriggerInfo]:
        if not node_id:
            return None
        for t in self.triggers:
            if t.nodeId == node_id:
                return t
        return None


class ResolvedTrigger(_Frozen):
    """The single trigger chosen for one invocation.

    `node` may be None even for a concrete kind; callers check availability
    before dispatching.
    """

    kind: TriggerKind
    node: Optional[TriggerInfo] = None
    reason: str = ""


__all__ = [
    "AnalyzedWorkflow",
    "DEFAULT_PROMPT_FIELD",
    "ResolvedTrigger",
    "TriggerInfo",
    "TriggerKind",
]
