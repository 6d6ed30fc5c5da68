"""Heuristics for pulling a human readable reply out of n8n output.

A chat workflow can answer from any node and under any key, so extraction
is a plain callable (`ReplyExtractor`) that the chat reply extractor takes as
a parameter. The default strategy scans every node's output items, in
runData order, for the first non-blank string under one of
`REPLY_TEXT_FIELDS`.

`ai_results` applies a narrower version of the same scan to one finished
execution and reports every matching item, not just the first.

Output item layout (per node in `runData`):
    [ {"data": {"main": [ [ {"json": {...}}, ... ], ... ]}}, ... ]
      ^ one entry per run      ^ one list per output branch
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Iterator, List, Mapping, Optional, Sequence, Tuple

from .models.n8n import Execution
from .models.results import AiResult, AiResultMetadata

__all__ = [
    "AI_RESULT_FIELDS",
    "REPLY_TEXT_FIELDS",
    "ReplyExtractor",
    "ai_results",
    "default_reply_extractor",
    "execution_mentions",
    "first_text_field",
    "immediate_reply",
    "iter_output_items",
]

REPLY_TEXT_FIELDS: Tuple[str, ...] = ("response", "text", "message", "output")
AI_RESULT_FIELDS: Tuple[str, ...] = ("response", "text", "message")
_IMMEDIATE_FIELDS: Tuple[str, ...] = ("response", "message", "text", "output")
_IMMEDIATE_DATA_FIELDS: Tuple[str, ...] = ("response", "message", "output")
# Acknowledgement n8n sends when a webhook responds before the workflow ends.
_ACKNOWLEDGEMENTS = frozenset({"Workflow was started"})

ReplyExtractor = Callable[[Execution], Optional[str]]


def iter_output_items(execution: Execution) -> Iterator[Tuple[str, Mapping[str, Any]]]:
    """Yield `(node_name, item_json)` for every output item of an execution."""
    for node_name, runs in execution.run_data.items():
        for run in runs:
            branches = run.data.get("main")
            if not isinstance(branches, list):
                continue
            for branch in branches:
                if not isinstance(branch, list):
                    continue
                for item in branch:
                    if isinstance(item, dict) and isinstance(item.get("json"), dict):
                        yield node_name, item["json"]


def first_text_field(
    obj: Any, fields: Sequence[str] = REPLY_TEXT_FIELDS
) -> Optional[str]:
    if not isinstance(obj, Mapping):
        return None
    for field in fields:
        value = obj.get(field)
        if isinstance(value, str) and value.strip():
            return value
    return None


def default_reply_extractor(execution: Execution) -> Optional[str]:
    for _node_name, item in iter_output_items(execution):
        text = first_text_field(item)
        if text is not None:
            return text
    return None


def immediate_reply(body: Any) -> Optional[str]:
    """Return reply text carried directly by a webhook response body.

    Handles plain text bodies, JSON objects (top level or under `data`) and
    the single-item list n8n's Respond to Webhook node emits for
    "all incoming items".
    """
    if isinstance(body, str):
        text = body.strip()
        return body if text and text not in _ACKNOWLEDGEMENTS else None
    if isinstance(body, list):
        body = body[0] if body and isinstance(body[0], Mapping) else None
    if not isinstance(body, Mapping):
        return None
    text = first_text_field(body, _IMMEDIATE_FIELDS) or first_text_field(
        body.get("data"), _IMMEDIATE_DATA_FIELDS
    )
    if text is None or text.strip() in _ACKNOWLEDGEMENTS:
        return None
    return text


def execution_mentions(execution: Execution, token: str) -> bool:
    """True when any output value of the execution equals `token`."""
    stack: list[Any] = [item for _name, item in iter_output_items(execution)]
    while stack:
        value = stack.pop()
        if isinstance(value, str):
            if value == token:
                return True
        elif isinstance(value, Mapping):
            stack.extend(value.values())
        elif isinstance(value, list):
            stack.extend(value)
    return False


def ai_results(execution: Execution, *, now: Optional[datetime] = None) -> List[AiResult]:
    """List the text answers of an execution for the history view.

    Only the first run of each node and its first output branch are
    considered. An item qualifies when its json carries a truthy value under
    one of `AI_RESULT_FIELDS`; that value is reported as is, so it need not
    be a string.
    """
    timestamp = execution.startedAt or (now or datetime.now(timezone.utc)).isoformat()
    results: List[AiResult] = []
    for node_name, runs in execution.run_data.items():
        if not runs:
            continue
        run = runs[0]
        branches = run.data.get("main")
        if not isinstance(branches, list) or not branches or not isinstance(branches[0], list):
            continue
        for index, item in enumerate(branches[0]):
            item_json = item.get("json") if isinstance(item, dict) else None
            if not isinstance(item_json, dict):
                continue
            content = next((item_json[f] for f in AI_RESULT_FIELDS if item_json.get(f)), None)
            if content is None:
                continue
            results.append(
                AiResult(
                    id=f"{node_name}-{index}",
                    nodeId=node_name,
                    nodeName=node_name,
                    content=content,
                    timestamp=timestamp,
                    metadata=AiResultMetadata(
                        model=item_json.get("model") or "unknown",
                        confidence=item_json.get("confidence") or 0.8,
                        executionTime=run.executionTime or 0,
                        tokens=item_json.get("tokens") or None,
                    ),
                )
            )
    return results
