"""
Tests for the node executors.
"""

from datetime import datetime, timedelta

import pytest

from conftest import FailingCompletion, ScriptedCompletion, tool_call
from flowpilot.engine.definition import Node
from flowpilot.engine.errors import ExternalCallError, InvalidResponseError, WorkflowValidationError
from flowpilot.engine.executors import build_executors
from flowpilot.engine.executors.agent import parse_structured_output
from flowpilot.engine.executors.decision import matches_case
from flowpilot.engine.executors.human import response_key
from flowpilot.engine.executors.start import StartExecutor
from flowpilot.engine.services import CompletionResponse, ExecutionServices
from flowpilot.engine.state import ExecutionState


EXECUTORS = build_executors()


def make_node(node_type: str, config=None, node_id: str = "n1") -> Node:
    return Node(id=node_id, type=node_type, config=config or {})


def make_state(data=None, **kwargs) -> ExecutionState:
    return ExecutionState(workflow_id="wf", data=data or {}, **kwargs)


async def run(node: Node, state: ExecutionState, services: ExecutionServices = None):
    return await EXECUTORS[node.type].execute(node, state, services or ExecutionServices())


def test_dispatch_table_is_closed():
    """One executor per node type, keyed by type."""
    assert set(EXECUTORS) == {"start", "end", "transform", "decision", "agent", "tool", "human"}
    for node_type, executor in EXECUTORS.items():
        assert executor.node_type == node_type


# ============================================================
# Start / End
# ============================================================

class TestStartExecutor:
    """Tests for start nodes."""

    def test_missing_required_input(self):
        node = make_node("start", {"inputVariables": [{"name": "topic", "type": "string", "required": True}]})
        with pytest.raises(WorkflowValidationError) as exc:
            StartExecutor.validate_inputs(node, {})
        assert "topic" in exc.value.message

    def test_required_with_default_is_optional(self):
        node = make_node("start", {"inputVariables": [{"name": "n", "required": True, "default": 3}]})
        StartExecutor.validate_inputs(node, {})

    def test_type_mismatch(self):
        node = make_node("start", {"inputVariables": [{"name": "value", "type": "number"}]})
        with pytest.raises(WorkflowValidationError):
            StartExecutor.validate_inputs(node, {"value": "ten"})

    @pytest.mark.asyncio
    async def test_seeds_defaults_then_input(self):
        node = make_node("start", {
            "inputVariables": [{"name": "rounds", "default": 2}],
            "defaults": {"lang": "en"},
        })
        result = await run(node, make_state(input={"rounds": 5, "topic": "solar"}))
        assert result.output == {"rounds": 5, "lang": "en", "topic": "solar"}

    @pytest.mark.asyncio
    async def test_input_mapping(self):
        node = make_node("start", {"inputMapping": {"query": "$.input.q", "mode": "fast"}})
        result = await run(node, make_state(input={"q": "wind", "ignored": 1}))
        assert result.output == {"query": "wind", "mode": "fast"}


class TestEndExecutor:
    """Tests for end nodes."""

    @pytest.mark.asyncio
    async def test_output_variables(self):
        node = make_node("end", {"outputVariables": ["result", "missing"]})
        result = await run(node, make_state({"result": "done", "other": 1}))
        assert result.terminal
        assert result.status == "completed"
        assert result.value == {"result": "done"}

    @pytest.mark.asyncio
    async def test_default_projection_hides_internal_keys(self):
        result = await run(make_node("end"), make_state({"a": 1, "_secret": 2}))
        assert result.value == {"a": 1}

    @pytest.mark.asyncio
    async def test_output_mapping_and_status_alias(self):
        node = make_node("end", {"outputMapping": {"answer": "$.data.x.y", "kind": "report"}, "status": "approved"})
        result = await run(node, make_state({"x": {"y": 42}}))
        assert result.value == {"answer": 42, "kind": "report"}
        assert result.status == "approved"

    def test_active_status_rejected(self):
        errors = EXECUTORS["end"].validate_config(make_node("end", {"status": "running"}))
        assert errors


# ============================================================
# Transform
# ============================================================

class TestTransformExecutor:
    """Tests for transform operations."""

    async def transform(self, operations, data=None):
        result = await run(make_node("transform", {"operations": operations}), make_state(data))
        return result.output

    @pytest.mark.asyncio
    async def test_set_then_increment(self):
        output = await self.transform([{"set": "x", "value": 5}, {"increment": "x", "by": 3}])
        assert output == {"x": 8}

    @pytest.mark.asyncio
    async def test_increment_non_numeric_counts_as_zero(self):
        output = await self.transform([{"increment": "n"}], {"n": "abc"})
        assert output == {"n": 1}

    @pytest.mark.asyncio
    async def test_push_then_length(self):
        output = await self.transform(
            [{"push": "item", "to": "items"}, {"lengthOf": "items", "to": "count"}],
            {"item": "c", "items": ["a", "b"]},
        )
        assert output == {"items": ["a", "b", "c"], "count": 3}

    @pytest.mark.asyncio
    async def test_set_keeps_dollar_literals(self):
        output = await self.transform([{"set": "price", "value": "$.99"}])
        assert output == {"price": "$.99"}

    @pytest.mark.asyncio
    async def test_set_resolves_templates(self):
        output = await self.transform([{"set": "greeting", "value": "Hi {{name}}"}], {"name": "Ada"})
        assert output == {"greeting": "Hi Ada"}

    @pytest.mark.asyncio
    async def test_dotted_target_creates_objects(self):
        output = await self.transform([{"set": "report.meta.version", "value": 2}])
        assert output == {"report": {"meta": {"version": 2}}}

    @pytest.mark.asyncio
    async def test_array_get(self):
        data = {"queries": ["q0", "q1"], "i": 1}
        output = await self.transform([
            {"arrayGet": "queries", "index": 0, "to": "first"},
            {"arrayGet": "queries", "index": "i", "to": "second"},
            {"arrayGet": "queries", "index": 9, "to": "none"},
        ], data)
        assert output == {"first": "q0", "second": "q1", "none": ""}

    @pytest.mark.asyncio
    async def test_copy_merge_condition(self):
        data = {"src": {"a": 1}, "patch": {"b": 2}, "score": 8}
        output = await self.transform([
            {"copy": "src", "to": "dst"},
            {"merge": "patch", "into": "dst"},
            {"condition": "$.data.score > 5", "to": "grade", "then": "good", "else": "bad"},
        ], data)
        assert output == {"dst": {"a": 1, "b": 2}, "grade": "good"}

    @pytest.mark.asyncio
    async def test_does_not_mutate_state(self):
        state = make_state({"items": ["a"], "next": "b"})
        result = await run(make_node("transform", {"operations": [{"push": "next", "to": "items"}]}), state)
        assert result.output == {"items": ["a", "b"]}
        assert state.data == {"items": ["a"], "next": "b"}

    def test_validate_rejects_unknown_operation(self):
        errors = EXECUTORS["transform"].validate_config(
            make_node("transform", {"operations": [{"explode": "x"}]})
        )
        assert errors


# ============================================================
# Decision
# ============================================================

class TestDecisionExecutor:
    """Tests for decision nodes."""

    @pytest.mark.asyncio
    async def test_expression_branches(self):
        node = make_node("decision", {"type": "expression", "expression": "$.data.value > 10"})
        assert (await run(node, make_state({"value": 15}))).branch == "true"
        assert (await run(node, make_state({"value": 5}))).branch == "false"

    @pytest.mark.asyncio
    async def test_no_side_effects(self):
        node = make_node("decision", {"expression": "$.data.value > 10"})
        result = await run(node, make_state({"value": 15}))
        assert result.output == {}

    @pytest.mark.asyncio
    async def test_failing_expression_takes_false(self):
        node = make_node("decision", {"expression": "$.data.value > 10"})
        result = await run(node, make_state({"value": "many"}))
        assert result.branch == "false"

    @pytest.mark.asyncio
    async def test_switch(self):
        node = make_node("decision", {
            "type": "switch",
            "variable": "$.data.category",
            "conditions": [
                {"equals": "billing", "branch": "finance"},
                {"in": ["bug", "outage"], "branch": "engineering"},
            ],
            "defaultBranch": "triage",
        })
        assert (await run(node, make_state({"category": "billing"}))).branch == "finance"
        assert (await run(node, make_state({"category": "outage"}))).branch == "engineering"
        assert (await run(node, make_state({"category": "other"}))).branch == "triage"

    def test_matches_case_operators(self):
        assert matches_case(5, {"greaterThan": 3})
        assert matches_case(3, {"lessThanOrEqual": 3})
        assert matches_case("abc-123", {"matches": r"\d+$"})
        assert not matches_case("x", {"greaterThan": 3})
        assert matches_case("a", {"notIn": ["b"]})


# ============================================================
# Human
# ============================================================

class TestHumanExecutor:
    """Tests for human checkpoints."""

    @pytest.fixture
    def node(self) -> Node:
        return make_node("human", {
            "message": {"en": "Approve {{title}}?", "de": "{{title}} freigeben?"},
            "options": [
                {"value": "approve", "label": {"en": "Approve", "de": "Freigeben"}, "style": "primary"},
                {"value": "reject", "label": "Reject", "style": "danger"},
            ],
            "inputSchema": {
                "type": "object",
                "properties": {"feedback": {"type": "string"}},
                "required": ["feedback"],
            },
            "showData": ["$.data.title", "$.data.meta.author"],
        }, node_id="review")

    @pytest.mark.asyncio
    async def test_checkpoint(self, node):
        state = make_state({"title": "Q3 plan", "meta": {"author": "Ada"}}, context={"language": "de"})
        result = await run(node, state, ExecutionServices(language="de"))

        checkpoint = result.checkpoint
        assert checkpoint.id.startswith("ckpt-")
        assert checkpoint.node_id == "review"
        assert checkpoint.message == "Q3 plan freigeben?"
        assert [o.label for o in checkpoint.options] == ["Freigeben", "Reject"]
        assert checkpoint.display_data == {"data_title": "Q3 plan", "data_meta_author": "Ada"}

    @pytest.mark.asyncio
    async def test_default_option(self):
        result = await run(make_node("human", {"message": "Go on?"}), make_state())
        assert result.checkpoint.option_values() == ["continue"]

    @pytest.mark.asyncio
    async def test_resume(self, node):
        checkpoint = (await run(node, make_state({"title": "T"}))).checkpoint
        result = EXECUTORS["human"].resume(node, checkpoint, "approve", {"feedback": "ok"})

        assert result.branch == "approve"
        assert result.output["feedback"] == "ok"
        assert result.output[response_key("review")]["response"] == "approve"

    @pytest.mark.asyncio
    async def test_resume_rejects_unknown_option(self, node):
        checkpoint = (await run(node, make_state())).checkpoint
        with pytest.raises(InvalidResponseError):
            EXECUTORS["human"].resume(node, checkpoint, "maybe", {"feedback": "x"})

    @pytest.mark.asyncio
    async def test_resume_validates_schema(self, node):
        checkpoint = (await run(node, make_state())).checkpoint
        with pytest.raises(InvalidResponseError) as exc:
            EXECUTORS["human"].resume(node, checkpoint, "approve", {"feedback": 3})
        assert exc.value.details

    @pytest.mark.asyncio
    async def test_resume_after_expiry(self, node):
        checkpoint = (await run(node, make_state())).checkpoint
        checkpoint.expires_at = datetime.now() - timedelta(seconds=1)
        with pytest.raises(InvalidResponseError):
            EXECUTORS["human"].resume(node, checkpoint, "approve", {"feedback": "late"})

    def test_duplicate_option_values_rejected(self):
        errors = EXECUTORS["human"].validate_config(make_node("human", {
            "message": "?",
            "options": [{"value": "a"}, {"value": "a"}],
        }))
        assert errors


# ============================================================
# Tool
# ============================================================

class TestToolExecutor:
    """Tests for tool nodes."""

    @pytest.mark.asyncio
    async def test_invokes_once_with_resolved_params(self, tools):
        node = make_node("tool", {
            "toolName": "search",
            "params": {"query": "$.nodeOutputs.planner.queries[0]"},
            "outputVariable": "hits",
        })
        state = make_state(node_outputs={"planner": {"queries": ["solar", "wind"]}})
        result = await run(node, state, ExecutionServices(tools=tools))
        assert result.output == {"hits": {"results": ["result for solar"]}}

    @pytest.mark.asyncio
    async def test_tool_id_and_parameters_aliases(self, tools):
        node = make_node("tool", {"toolId": "add", "parameters": {"a": 2, "b": "{{b}}"}, "outputVariable": "r"})
        result = await run(node, make_state({"b": 3}), ExecutionServices(tools=tools))
        assert result.value == {"sum": 5}

    @pytest.mark.asyncio
    async def test_failure_becomes_external_call_error(self, tools):
        node = make_node("tool", {"toolName": "explode"})
        with pytest.raises(ExternalCallError) as exc:
            await run(node, make_state(), ExecutionServices(tools=tools))
        assert exc.value.node_id == "n1"

    @pytest.mark.asyncio
    async def test_unknown_tool(self, tools):
        with pytest.raises(ExternalCallError):
            await run(make_node("tool", {"toolName": "nope"}), make_state(), ExecutionServices(tools=tools))


# ============================================================
# Agent
# ============================================================

class TestAgentExecutor:
    """Tests for agent nodes."""

    @pytest.mark.asyncio
    async def test_simple_completion(self):
        completion = ScriptedCompletion(["A short summary."])
        node = make_node("agent", {
            "system": {"en": "Be concise.", "de": "Kurz."},
            "prompt": "Summarize: {{text}}",
            "modelId": "m-small",
            "outputVariable": "summary",
        })
        result = await run(node, make_state({"text": "long text"}), ExecutionServices(completion=completion))

        assert result.output == {"summary": "A short summary."}
        request = completion.requests[0]
        assert request.system == "Be concise."
        assert request.prompt == "Summarize: long text"
        assert request.model_id == "m-small"

    @pytest.mark.asyncio
    async def test_tool_loop(self, tools):
        completion = ScriptedCompletion([
            tool_call("search", {"query": "solar"}),
            CompletionResponse(content="Solar is growing."),
        ])
        node = make_node("agent", {"prompt": "Research", "tools": ["search"], "outputVariable": "out"})
        result = await run(node, make_state(), ExecutionServices(completion=completion, tools=tools))

        assert result.value == "Solar is growing."
        second = completion.requests[1].messages
        assert second[-1]["role"] == "tool"
        assert "result for solar" in second[-1]["content"]

    @pytest.mark.asyncio
    async def test_tool_failure_is_fed_back(self, tools):
        completion = ScriptedCompletion([tool_call("explode", {}), "Recovered."])
        node = make_node("agent", {"prompt": "Go", "tools": ["explode"]})
        result = await run(node, make_state(), ExecutionServices(completion=completion, tools=tools))

        assert result.value == "Recovered."
        assert '"error": true' in completion.requests[1].messages[-1]["content"]

    @pytest.mark.asyncio
    async def test_tool_outside_allow_list(self, tools):
        completion = ScriptedCompletion([tool_call("add", {"a": 1, "b": 2}), "done"])
        node = make_node("agent", {"prompt": "Go", "tools": ["search"]})
        await run(node, make_state(), ExecutionServices(completion=completion, tools=tools))
        assert "not available" in completion.requests[1].messages[-1]["content"]

    @pytest.mark.asyncio
    async def test_max_iterations_bounds_loop(self, tools):
        completion = ScriptedCompletion(default=tool_call("search", {"query": "again"}))
        node = make_node("agent", {"prompt": "Loop", "tools": ["search"], "maxIterations": 3})
        await run(node, make_state(), ExecutionServices(completion=completion, tools=tools))
        assert len(completion.requests) == 3

    @pytest.mark.asyncio
    async def test_structured_output(self):
        completion = ScriptedCompletion(['Here you go:\n```json\n{"finding": "cheap panels"}\n```'])
        node = make_node("agent", {
            "prompt": "Find",
            "outputVariable": "f",
            "outputSchema": {"type": "object", "properties": {"finding": {"type": "string"}}},
        })
        result = await run(node, make_state(), ExecutionServices(completion=completion))
        assert result.output == {"f": {"finding": "cheap panels"}}

    @pytest.mark.asyncio
    async def test_unparseable_structured_output_keeps_text(self):
        completion = ScriptedCompletion(["no json here"])
        node = make_node("agent", {"prompt": "Find", "outputVariable": "f", "outputSchema": {"type": "object"}})
        result = await run(node, make_state(), ExecutionServices(completion=completion))
        assert result.output == {"f": "no json here"}

    @pytest.mark.asyncio
    async def test_completion_failure(self):
        node = make_node("agent", {"prompt": "Go"})
        with pytest.raises(ExternalCallError):
            await run(node, make_state(), ExecutionServices(completion=FailingCompletion()))

    def test_parse_structured_output_forms(self):
        assert parse_structured_output('{"a": 1}') == {"a": 1}
        assert parse_structured_output('text [1, 2] text') == [1, 2]
        assert parse_structured_output("plain") == "plain"
        assert parse_structured_output("") is None
