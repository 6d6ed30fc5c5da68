"""Pydantic models for n8n public API payloads.

These models provide a typed, validated structure for the JSON returned by
the n8n REST API (`/api/v1/workflows` and `/api/v1/executions`). Field names
keep n8n's camelCase so raw responses validate without aliasing; unknown
fields are ignored because n8n adds keys between releases.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

CHAT_TRIGGER_TYPE = "@n8n/n8n-nodes-langchain.chatTrigger"
WEBHOOK_TYPE = "n8n-nodes-base.webhook"
MANUAL_TRIGGER_TYPE = "n8n-nodes-base.manualTrigger"
CRON_TYPES = ("n8n-nodes-base.cron", "n8n-nodes-base.scheduleTrigger")

# Execution states after which no further output will appear.
NON_TERMINAL_STATUSES = frozenset({"running", "new"})


class _N8nModel(BaseModel):
    # The public API returns numeric execution ids; ids are handled as strings.
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


class WorkflowNode(_N8nModel):
    """Represents a static node as defined in the workflow graph."""

    id: str = ""
    name: str
    type: str = ""
    typeVersion: Optional[float] = None
    position: Optional[List[float]] = None
    webhookId: Optional[str] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)


class Workflow(_N8nModel):
    """A workflow definition as returned by `GET /workflows/{id}`."""

    id: str
    name: str = ""
    active: bool = False
    tags: List[Any] = Field(default_factory=list)
    createdAt: Optional[str] = None
    updatedAt: Optional[str] = None
    nodes: List[WorkflowNode] = Field(default_factory=list)
    connections: Dict[str, Any] = Field(default_factory=dict)


class NodeRun(_N8nModel):
    """Represents a single runtime execution of a node within a workflow.

    `data` is keyed by connection type; for regular nodes this is
    `{"main": [[{"json": {...}}, ...], ...]}` (one list per output branch).
    """

    startTime: Optional[int] = None
    executionTime: Optional[int] = None
    executionStatus: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[Dict[str, Any]] = None


class ResultData(_N8nModel):
    """Contains the `runData`, which maps node names to their execution runs."""

    runData: Dict[str, List[NodeRun]] = Field(default_factory=dict)
    lastNodeExecuted: Optional[str] = None


class ExecutionPayload(_N8nModel):
    """The `data` object of an execution fetched with `includeData=true`."""

    resultData: ResultData = Field(default_factory=ResultData)


class Execution(_N8nModel):
    """One run of a workflow, as listed by `GET /executions`.

    `data` is only populated for detail fetches; list responses leave it
    empty.
    """

    id: str
    workflowId: Optional[str] = None
    mode: Optional[str] = None
    status: Optional[str] = None
    finished: Optional[bool] = None
    startedAt: Optional[str] = None
    stoppedAt: Optional[str] = None
    data: Optional[ExecutionPayload] = None

    @property
    def run_data(self) -> Dict[str, List[NodeRun]]:
        if self.data is None:
            return {}
        return self.data.resultData.runData

    @property
    def is_terminal(self) -> bool:
        """True once the execution can no longer produce output.

        An execution without a status is treated as still running.
        """
        if not self.status:
            return False
        return self.status not in NON_TERMINAL_STATUSES


__all__ = [
    "CHAT_TRIGGER_TYPE",
    "CRON_TYPES",
    "Execution",
    "ExecutionPayload",
    "MANUAL_TRIGGER_TYPE",
    "NodeRun",
    "ResultData",
    "WEBHOOK_TYPE",
    "Workflow",
    "WorkflowNode",
]
