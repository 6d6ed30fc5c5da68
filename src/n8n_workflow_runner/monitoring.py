"""Live monitoring summary computed from recent executions.

Display-only data: nothing in the execution path branches on it.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from .models.n8n import Execution, NodeRun
from .models.results import CurrentExecution, LiveMonitoring, MonitoringMetrics, NodeResult

RECENT_EXECUTIONS_SHOWN = 10


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an n8n ISO timestamp into an aware UTC datetime (None if invalid)."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def summarize_executions(
    workflow_id: str,
    executions: Sequence[Execution],
    *,
    now: Optional[datetime] = None,
) -> LiveMonitoring:
    """Build the live monitoring view for a workflow.

    Args:
        workflow_id: Workflow the executions belong to.
        executions: Recent executions, most recent first.
        now: Reference time for the "today" window (defaults to UTC now).

    Returns:
        A `LiveMonitoring` with running state, the ten most recent
        executions and today's success/error metrics.
    """
    today = (now or datetime.now(timezone.utc)).astimezone(timezone.utc).date()

    running = next((e for e in executions if e.status == "running"), None)

    todays: List[Execution] = []
    durations: List[float] = []
    for e in executions:
        started = parse_timestamp(e.startedAt)
        stopped = parse_timestamp(e.stoppedAt)
        if started is not None and started.date() == today:
            todays.append(e)
        if started is not None and stopped is not None:
            durations.append((stopped - started).total_seconds() * 1000)

    successful_today = sum(1 for e in todays if e.status == "success")
    failed_today = sum(1 for e in todays if e.status == "error")

    current = None
    if running is not None:
        # n8n does not expose per-node progress over the public API.
        current = CurrentExecution(id=running.id, startedAt=running.startedAt, progress=50)

    return LiveMonitoring(
        workflowId=workflow_id,
        isRunning=running is not None,
        currentExecution=current,
        recentExecutions=list(executions[:RECENT_EXECUTIONS_SHOWN]),
        metrics=MonitoringMetrics(
            executionsToday=len(todays),
            successRate=round(successful_today / len(todays) * 100) if todays else 0,
            averageResponseTime=round(sum(durations) / len(durations)) if durations else 0,
            errorCount=failed_today,
        ),
    )


def node_results(run_data: Dict[str, List[NodeRun]]) -> List[NodeResult]:
    """Per-node outcome of the last run of every node in `runData`."""
    results: List[NodeResult] = []
    for node_name, runs in run_data.items():
        if not runs:
            continue
        run = runs[-1]
        if run.error:
            status = "error"
        elif run.executionStatus == "running":
            status = "running"
        else:
            status = "success"
        message = run.error.get("message") if run.error else None
        results.append(
            NodeResult(
                nodeId=node_name,
                nodeName=node_name,
                status=status,
                output=run.data.get("main"),
                error=str(message) if message is not None else None,
                duration=run.executionTime,
            )
        )
    return results


__all__ = ["node_results", "parse_timestamp", "summarize_executions"]
