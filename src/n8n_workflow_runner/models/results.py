"""Request and result envelopes exchanged with callers of the runner."""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from .n8n import Execution
from .triggers import TriggerKind


class ExecutionType(str, Enum):
    MANUAL = "manual"
    WEBHOOK = "webhook"
    TEST = "test"


class ExecuteWorkflowRequest(BaseModel):
    """Body of `POST /workflows/{id}/execute`."""

    type: Optional[ExecutionType] = None
    payload: Optional[Dict[str, Any]] = None
    triggerType: Optional[Literal["chat", "webhook", "manual"]] = None
    triggerNodeId: Optional[str] = None


class NodeResult(BaseModel):
    nodeId: str
    nodeName: str
    status: Literal["success", "error", "running"]
    output: Any = None
    error: Optional[str] = None
    duration: Optional[int] = None


class ExecutionResult(BaseModel):
    """Outcome of a manual or webhook invocation."""

    executionId: Optional[str] = None
    data: Any = None
    nodeResults: List[NodeResult] = Field(default_factory=list)


class ChatRequest(BaseModel):
    workflowId: str
    message: str
    userId: Optional[str] = None
    timestamp: Optional[str] = None
    triggerNodeId: Optional[str] = None
    waitForResultMs: Optional[int] = None


class ChatReplyMetadata(BaseModel):
    executionId: Optional[str] = None
    workflowName: str = ""
    sessionId: str = ""
    timestamp: str = ""


class ChatReply(BaseModel):
    status: Literal["completed"] = "completed"
    response: str
    metadata: ChatReplyMetadata
    raw: Any = None


class OrchestrationResult(BaseModel):
    """Uniform success envelope of the execute route."""

    triggerKind: TriggerKind
    status: Literal["completed"] = "completed"
    executionId: Optional[str] = None
    data: Any = None
    nodeResults: List[NodeResult] = Field(default_factory=list)
    fallbackUsed: bool = False
    # Wall-clock milliseconds spent serving the request.
    duration: Optional[int] = None

    def to_response(self) -> Dict[str, Any]:
        body = self.model_dump(mode="json")
        return {"success": True, **body}


class AiResultMetadata(BaseModel):
    model: Any = "unknown"
    confidence: Any = 0.8
    executionTime: int = 0
    tokens: Any = None


class AiResult(BaseModel):
    """One text answer found in a node's output items."""

    id: str
    nodeId: str
    nodeName: str
    type: Literal["text_response"] = "text_response"
    content: Any
    timestamp: str
    metadata: AiResultMetadata = Field(default_factory=AiResultMetadata)


class CurrentExecution(BaseModel):
    id: str
    startedAt: Optional[str] = None
    currentNode: Optional[str] = None
    progress: int = 0


class MonitoringMetrics(BaseModel):
    executionsToday: int = 0
    successRate: int = 0
    averageResponseTime: int = 0
    errorCount: int = 0


class LiveMonitoring(BaseModel):
    workflowId: str
    isRunning: bool = False
    currentExecution: Optional[CurrentExecution] = None
    recentExecutions: List[Execution] = Field(default_factory=list)
    metrics: MonitoringMetrics = Field(default_factory=MonitoringMetrics)


class TestScenario(BaseModel):
    __test__ = False  # not a pytest class

    name: str
    description: str
    payload: Optional[Dict[str, Any]] = None
    preferredTriggerType: Optional[Literal["chat", "webhook", "manual"]] = None


class HealthStatus(BaseModel):
    healthy: bool
    status: str
    error: Optional[str] = None


__all__ = [
    "AiResult",
    "AiResultMetadata",
    "ChatReply",
    "ChatReplyMetadata",
    "ChatRequest",
    "CurrentExecution",
    "ExecuteWorkflowRequest",
    "ExecutionResult",
    "ExecutionType",
    "HealthStatus",
    "LiveMonitoring",
    "MonitoringMetrics",
    "NodeResult",
    "OrchestrationResult",
    "TestScenario",
]
