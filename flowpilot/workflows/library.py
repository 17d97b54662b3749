"""
Built-in workflow definitions.

Reference workflows registered at startup (``REGISTER_BUILTIN_WORKFLOWS``).
They double as usage examples for each node type:

- ``simple-linear``: start -> transform -> end
- ``value-decision``: expression decision with two branches
- ``content-approval``: human checkpoint with approve / reject / revise
- ``iterative-research``: agent loop bounded by a data counter
- ``text-analysis``: direct tool nodes with an error policy
"""

from typing import Any, Dict, List
import logging

from flowpilot.engine.definition import WorkflowDefinition
from flowpilot.storage.memory import WorkflowStore


logger = logging.getLogger(__name__)


SIMPLE_LINEAR: Dict[str, Any] = {
    "id": "simple-linear",
    "name": {"en": "Simple Linear"},
    "description": "Prefixes the input and returns it",
    "config": {"maxIterations": 5, "allowCycles": False},
    "nodes": [
        {
            "id": "start",
            "type": "start",
            "name": {"en": "Start"},
            "config": {
                "inputVariables": [{"name": "input", "type": "string", "required": True}]
            },
        },
        {
            "id": "process",
            "type": "transform",
            "name": {"en": "Process Input"},
            "config": {"operations": [{"set": "result", "value": "processed: {{input}}"}]},
        },
        {
            "id": "end",
            "type": "end",
            "name": {"en": "End"},
            "config": {"outputVariables": ["result"]},
        },
    ],
    "edges": [
        {"id": "e1", "source": "start", "target": "process"},
        {"id": "e2", "source": "process", "target": "end"},
    ],
}


VALUE_DECISION: Dict[str, Any] = {
    "id": "value-decision",
    "name": {"en": "Value Decision"},
    "description": "Classifies a number as high or low",
    "config": {"maxIterations": 5, "allowCycles": False},
    "nodes": [
        {
            "id": "start",
            "type": "start",
            "name": {"en": "Start"},
            "config": {
                "inputVariables": [{"name": "value", "type": "number", "required": True}]
            },
        },
        {
            "id": "check",
            "type": "decision",
            "name": {"en": "Check Value"},
            "config": {"type": "expression", "expression": "$.data.value > 10"},
        },
        {
            "id": "high",
            "type": "transform",
            "name": {"en": "High Value"},
            "config": {"operations": [{"set": "result", "value": "high"}]},
        },
        {
            "id": "low",
            "type": "transform",
            "name": {"en": "Low Value"},
            "config": {"operations": [{"set": "result", "value": "low"}]},
        },
        {
            "id": "end",
            "type": "end",
            "name": {"en": "End"},
            "config": {"outputVariables": ["result", "value"]},
        },
    ],
    "edges": [
        {"id": "e1", "source": "start", "target": "check"},
        {
            "id": "e2",
            "source": "check",
            "target": "high",
            "condition": {"type": "equals", "field": "result.branch", "value": "true"},
        },
        {
            "id": "e3",
            "source": "check",
            "target": "low",
            "condition": {"type": "equals", "field": "result.branch", "value": "false"},
        },
        {"id": "e4", "source": "high", "target": "end"},
        {"id": "e5", "source": "low", "target": "end"},
    ],
}


CONTENT_APPROVAL: Dict[str, Any] = {
    "id": "content-approval",
    "name": {"en": "Content Approval", "de": "Inhaltsfreigabe"},
    "description": "Asks a reviewer to approve, reject or revise content",
    "config": {"maxIterations": 10, "allowCycles": True},
    "nodes": [
        {
            "id": "start",
            "type": "start",
            "name": {"en": "Start"},
            "config": {
                "inputVariables": [{"name": "content", "type": "string", "required": True}]
            },
        },
        {
            "id": "approval",
            "type": "human",
            "name": {"en": "Request Approval", "de": "Freigabe anfordern"},
            "config": {
                "message": {
                    "en": "Please review and approve the content: {{content}}",
                    "de": "Bitte pruefen und freigeben: {{content}}",
                },
                "options": [
                    {"value": "approve", "label": {"en": "Approve", "de": "Freigeben"}, "style": "primary"},
                    {"value": "reject", "label": {"en": "Reject", "de": "Ablehnen"}, "style": "danger"},
                    {"value": "revise", "label": {"en": "Revise", "de": "Ueberarbeiten"}, "style": "secondary"},
                ],
                "inputSchema": {
                    "type": "object",
                    "properties": {"feedback": {"type": "string", "title": "Feedback"}},
                },
                "showData": ["$.data.content"],
            },
        },
        {
            "id": "approved",
            "type": "transform",
            "name": {"en": "Approved"},
            "config": {"operations": [{"set": "decision", "value": "approved"}]},
        },
        {
            "id": "rejected",
            "type": "transform",
            "name": {"en": "Rejected"},
            "config": {"operations": [{"set": "decision", "value": "rejected"}]},
        },
        {
            "id": "end",
            "type": "end",
            "name": {"en": "End"},
            "config": {"outputVariables": ["decision", "content", "feedback"]},
        },
    ],
    "edges": [
        {"id": "e1", "source": "start", "target": "approval"},
        {
            "id": "e2",
            "source": "approval",
            "target": "approved",
            "condition": {"type": "equals", "field": "result.branch", "value": "approve"},
        },
        {
            "id": "e3",
            "source": "approval",
            "target": "rejected",
            "condition": {"type": "equals", "field": "result.branch", "value": "reject"},
        },
        {
            "id": "e4",
            "source": "approval",
            "target": "approval",
            "condition": {"type": "equals", "field": "result.branch", "value": "revise"},
        },
        {"id": "e5", "source": "approved", "target": "end"},
        {"id": "e6", "source": "rejected", "target": "end"},
    ],
}


ITERATIVE_RESEARCH: Dict[str, Any] = {
    "id": "iterative-research",
    "name": {"en": "Iterative Research"},
    "description": "Collects one finding per round until the round limit is reached",
    "config": {"maxIterations": 20, "allowCycles": True},
    "nodes": [
        {
            "id": "start",
            "type": "start",
            "name": {"en": "Start"},
            "config": {
                "inputVariables": [
                    {"name": "topic", "type": "string", "required": True},
                    {"name": "rounds", "type": "number", "required": False, "default": 2},
                ]
            },
        },
        {
            "id": "init",
            "type": "transform",
            "name": {"en": "Initialize"},
            "config": {
                "operations": [
                    {"set": "findings", "value": []},
                    {"set": "iteration", "value": 0},
                    {"copy": "rounds", "to": "maxIterations"},
                ]
            },
        },
        {
            "id": "research",
            "type": "agent",
            "name": {"en": "Research"},
            "config": {
                "system": {
                    "en": "You are a research assistant. Provide exactly one new finding about the topic."
                },
                "prompt": {
                    "en": (
                        "Research topic: {{topic}}\nIteration: {{iteration}}\n"
                        "Previous findings: {{findings}}\n\n"
                        "Provide one new key finding that was not mentioned before. "
                        "Output as JSON with a \"finding\" field."
                    )
                },
                "outputVariable": "currentFinding",
                "outputSchema": {
                    "type": "object",
                    "properties": {"finding": {"type": "string"}},
                },
            },
        },
        {
            "id": "accumulate",
            "type": "transform",
            "name": {"en": "Accumulate Findings"},
            "config": {
                "operations": [
                    {"push": "currentFinding", "to": "findings"},
                    {"increment": "iteration", "by": 1},
                ]
            },
        },
        {
            "id": "check-complete",
            "type": "decision",
            "name": {"en": "Check Complete"},
            "config": {
                "type": "expression",
                "expression": "$.data.iteration >= $.data.maxIterations",
            },
        },
        {
            "id": "end",
            "type": "end",
            "name": {"en": "End"},
            "config": {"outputVariables": ["findings", "iteration", "topic"]},
        },
    ],
    "edges": [
        {"id": "e1", "source": "start", "target": "init"},
        {"id": "e2", "source": "init", "target": "research"},
        {"id": "e3", "source": "research", "target": "accumulate"},
        {"id": "e4", "source": "accumulate", "target": "check-complete"},
        {
            "id": "e5",
            "source": "check-complete",
            "target": "end",
            "condition": {"type": "equals", "field": "result.branch", "value": "true"},
        },
        {
            "id": "e6",
            "source": "check-complete",
            "target": "research",
            "condition": {"type": "equals", "field": "result.branch", "value": "false"},
        },
    ],
}


TEXT_ANALYSIS: Dict[str, Any] = {
    "id": "text-analysis",
    "name": {"en": "Text Analysis"},
    "description": "Runs the built-in text tools over a document",
    "config": {"maxIterations": 10, "allowCycles": False},
    "nodes": [
        {
            "id": "start",
            "type": "start",
            "name": {"en": "Start"},
            "config": {
                "inputVariables": [
                    {"name": "text", "type": "string", "required": True},
                    {"name": "keywordLimit", "type": "number", "default": 5},
                ]
            },
        },
        {
            "id": "stats",
            "type": "tool",
            "name": {"en": "Text Statistics"},
            "config": {
                "toolName": "text_stats",
                "params": {"text": "$.data.text"},
                "outputVariable": "stats",
            },
        },
        {
            "id": "keywords",
            "type": "tool",
            "name": {"en": "Keywords"},
            "config": {
                "toolName": "extract_keywords",
                "params": {"text": "$.data.text", "limit": "$.data.keywordLimit"},
                "outputVariable": "keywords",
                "onError": "continue",
            },
        },
        {
            "id": "is-long",
            "type": "decision",
            "name": {"en": "Long Text?"},
            "config": {
                "type": "switch",
                "variable": "$.data.stats.words",
                "conditions": [{"greaterThan": 100, "branch": "long"}],
                "defaultBranch": "short",
            },
        },
        {
            "id": "label-long",
            "type": "transform",
            "name": {"en": "Label Long"},
            "config": {"operations": [{"set": "sizeLabel", "value": "long"}]},
        },
        {
            "id": "label-short",
            "type": "transform",
            "name": {"en": "Label Short"},
            "config": {"operations": [{"set": "sizeLabel", "value": "short"}]},
        },
        {
            "id": "end",
            "type": "end",
            "name": {"en": "End"},
            "config": {
                "outputMapping": {
                    "sizeLabel": "$.data.sizeLabel",
                    "words": "$.data.stats.words",
                    "keywords": "$.data.keywords.keywords",
                }
            },
        },
    ],
    "edges": [
        {"id": "e1", "source": "start", "target": "stats"},
        {"id": "e2", "source": "stats", "target": "keywords"},
        {"id": "e3", "source": "keywords", "target": "is-long"},
        {
            "id": "e4",
            "source": "is-long",
            "target": "label-long",
            "condition": {"type": "equals", "field": "result.branch", "value": "long"},
        },
        {"id": "e5", "source": "is-long", "target": "label-short"},
        {"id": "e6", "source": "label-long", "target": "end"},
        {"id": "e7", "source": "label-short", "target": "end"},
    ],
}


BUILTIN_WORKFLOWS: List[Dict[str, Any]] = [
    SIMPLE_LINEAR,
    VALUE_DECISION,
    CONTENT_APPROVAL,
    ITERATIVE_RESEARCH,
    TEXT_ANALYSIS,
]


def builtin_definitions() -> List[WorkflowDefinition]:
    """Parse the built-in workflow documents."""
    return [WorkflowDefinition.from_dict(document) for document in BUILTIN_WORKFLOWS]


async def register_builtin_workflows(store: WorkflowStore, engine=None) -> int:
    """
    Register the built-in workflows in a workflow store.

    Args:
        store: Definition store
        engine: When given, each definition is validated by the engine
            first (structure plus node configs)

    Returns:
        Number of workflows registered
    """
    count = 0
    for definition in builtin_definitions():
        if engine is not None:
            definition = engine.validate(definition)
        await store.save(definition)
        count += 1
    logger.info(f"Registered {count} built-in workflows")
    return count
