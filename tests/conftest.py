import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest

# Ensure `src` is on sys.path for tests when the package is not installed editable.
ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from n8n_workflow_runner.config import Settings  # noqa: E402

BASE_URL = "http://n8n.test"
API_KEY = "test-key"


class FakeN8n:
    """In-memory n8n instance served through `httpx.MockTransport`.

    Webhook URLs not registered in `webhooks` answer 404, which is what n8n
    does for an unknown path.
    """

    def __init__(self) -> None:
        self.workflows: Dict[str, Dict[str, Any]] = {}
        # Newest first, as the public API lists them.
        self.executions: List[Dict[str, Any]] = []
        self.execution_details: Dict[str, Dict[str, Any]] = {}
        self.webhooks: Dict[str, Tuple[int, Any]] = {}
        self.manual_response: Tuple[int, Any] = (200, {"id": "900"})
        self.stop_status: int = 200
        self.calls: List[Tuple[str, str, Any]] = []

    def add_workflow(self, workflow: Dict[str, Any]) -> None:
        self.workflows[workflow["id"]] = workflow

    def webhook_calls(self) -> List[Tuple[str, str, Any]]:
        return [c for c in self.calls if "/api/v1/" not in c[1]]

    def _json_body(self, request: httpx.Request) -> Any:
        if not request.content:
            return None
        return json.loads(request.content)

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url.copy_with(query=None))
        body = self._json_body(request)
        self.calls.append((request.method, url, body))
        path = request.url.path
        if path.startswith("/api/v1/"):
            if request.headers.get("X-N8N-API-KEY") != API_KEY:
                return httpx.Response(401, json={"message": "unauthorized"})
            return self._api(request, path[len("/api/v1"):], body)
        status, payload = self.webhooks.get(url, (404, {"message": "webhook not registered"}))
        if isinstance(payload, str):
            return httpx.Response(status, text=payload)
        return httpx.Response(status, json=payload)

    def _api(self, request: httpx.Request, endpoint: str, body: Any) -> httpx.Response:
        parts = endpoint.strip("/").split("/")
        method = request.method
        if method == "GET" and parts == ["workflows"]:
            return httpx.Response(200, json={"data": list(self.workflows.values())})
        if method == "GET" and len(parts) == 2 and parts[0] == "workflows":
            wf = self.workflows.get(parts[1])
            if wf is None:
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(200, json=wf)
        if method == "POST" and len(parts) == 3 and parts[2] == "execute":
            status, payload = self.manual_response
            return httpx.Response(status, json=payload)
        if method == "GET" and parts == ["executions"]:
            workflow_id = request.url.params.get("workflowId")
            limit = int(request.url.params.get("limit", "20"))
            items = [
                e for e in self.executions if not workflow_id or e.get("workflowId") == workflow_id
            ]
            return httpx.Response(200, json={"data": items[:limit]})
        if method == "GET" and len(parts) == 2 and parts[0] == "executions":
            detail = self.execution_details.get(parts[1])
            if detail is None:
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(200, json=detail)
        if method == "POST" and len(parts) == 3 and parts[2] == "stop":
            return httpx.Response(self.stop_status, json={})
        return httpx.Response(404, json={"message": f"no route {method} {endpoint}"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "N8N_BASE_URL": BASE_URL,
        "N8N_API_KEY": API_KEY,
        "CHAT_POLL_INTERVAL_MS": 10,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def node(
    name: str,
    type_: str,
    *,
    id_: Optional[str] = None,
    webhook_id: Optional[str] = None,
    **parameters: Any,
) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "id": id_ or name.lower().replace(" ", "-"),
        "name": name,
        "type": type_,
        "parameters": parameters,
    }
    if webhook_id:
        data["webhookId"] = webhook_id
    return data


def workflow(id_: str, *nodes: Dict[str, Any], active: bool = False, name: str = "Test Workflow") -> Dict[str, Any]:
    return {"id": id_, "name": name, "active": active, "nodes": list(nodes), "connections": {}}


def run_data_execution(
    execution_id: str, workflow_id: str, node_outputs: Dict[str, List[Dict[str, Any]]], status: str = "success"
) -> Dict[str, Any]:
    """Execution detail whose runData holds one run per node with the given items."""
    return {
        "id": execution_id,
        "workflowId": workflow_id,
        "status": status,
        "finished": status != "running",
        "data": {
            "resultData": {
                "runData": {
                    name: [{"data": {"main": [[{"json": item} for item in items]]}}]
                    for name, items in node_outputs.items()
                }
            }
        },
    }


@pytest.fixture
def fake_n8n() -> FakeN8n:
    return FakeN8n()


@pytest.fixture
def settings() -> Settings:
    return make_settings()
