"""Error taxonomy for workflow execution.

Every failure the runner can surface to a caller is an `AutomationError`
subclass carrying the HTTP status it maps to and a human readable message.
The introspector and resolver never raise; all of these originate in the
gateway, the orchestrator or the chat reply extractor.
"""
from __future__ import annotations

from typing import Any, Optional


class AutomationError(Exception):
    """Base class for all workflow execution failures."""

    status_code: int = 500

    def __init__(self, message: str, *, detail: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class NotFound(AutomationError):
    status_code = 404


class WorkflowNotFound(NotFound):
    def __init__(self, workflow_id: str, *, detail: Optional[Any] = None):
        super().__init__("Workflow not found", detail=detail)
        self.workflow_id = workflow_id


class ExecutionNotFound(NotFound):
    def __init__(self, execution_id: str, *, detail: Optional[Any] = None):
        super().__init__(f"Execution {execution_id} not found", detail=detail)
        self.execution_id = execution_id


class BadRequest(AutomationError):
    """Requested trigger is not present, or no entrypoint could be resolved."""

    status_code = 400


class ExecutionFailed(AutomationError):
    """A trigger invocation returned a non-success response upstream."""

    status_code = 500


class ReplyTimeout(AutomationError):
    """No chat reply could be extracted before the deadline."""

    status_code = 500


class ReplyCancelled(ReplyTimeout):
    """Polling stopped early because the caller went away."""


class EngineRequestError(AutomationError):
    """A read against the n8n API failed (transport error or non-2xx)."""

    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        upstream_status: Optional[int] = None,
        detail: Optional[Any] = None,
    ):
        super().__init__(message, detail=detail)
        self.upstream_status = upstream_status


__all__ = [
    "AutomationError",
    "BadRequest",
    "EngineRequestError",
    "ExecutionFailed",
    "ExecutionNotFound",
    "NotFound",
    "ReplyCancelled",
    "ReplyTimeout",
    "WorkflowNotFound",
]
