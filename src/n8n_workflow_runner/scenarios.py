"""Ready-made test invocations for a workflow.

Scenarios are suggestions for a dashboard's "run test" buttons; each one is
a payload plus the trigger type it is meant for.
"""
from __future__ import annotations

from typing import List

from .models.n8n import CHAT_TRIGGER_TYPE, MANUAL_TRIGGER_TYPE, WEBHOOK_TYPE, Workflow
from .models.results import TestScenario

__all__ = ["generate_test_scenarios"]


def generate_test_scenarios(workflow: Workflow) -> List[TestScenario]:
    nodes = workflow.nodes
    has_chat = any(n.type == CHAT_TRIGGER_TYPE for n in nodes)
    has_webhook = any(n.type == WEBHOOK_TYPE or n.webhookId for n in nodes)
    has_manual = any(n.type == MANUAL_TRIGGER_TYPE for n in nodes)

    scenarios: List[TestScenario] = []
    if has_chat:
        scenarios.append(
            TestScenario(
                name="Chat Test",
                description="Send a greeting to the chat trigger",
                payload={"chatInput": "Hallo"},
                preferredTriggerType="chat",
            )
        )
    if has_webhook:
        scenarios.append(
            TestScenario(
                name="Webhook Test",
                description="Call the webhook with an empty body",
                preferredTriggerType="webhook",
            )
        )
    if has_manual:
        scenarios.append(
            TestScenario(
                name="Manual Test",
                description="Start the workflow through its manual trigger",
                preferredTriggerType="manual",
            )
        )
    if not scenarios:
        scenarios.append(
            TestScenario(
                name="Basic Test",
                description="Run the workflow without input",
                preferredTriggerType="manual",
            )
        )
    return scenarios
