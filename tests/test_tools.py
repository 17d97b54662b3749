"""
Tests for the tool registry and the built-in tools.
"""

import copy

import pytest

import flowpilot.tools.builtin  # noqa: F401
from flowpilot.tools import ToolNotFoundError, ToolRegistry, tool_registry
from flowpilot.tools.builtin import extract_keywords, summarize_findings, text_stats
from flowpilot.workflows.library import TEXT_ANALYSIS


class TestToolRegistry:
    """Tests for ToolRegistry."""

    @pytest.mark.asyncio
    async def test_sync_and_async_tools(self, tools):
        assert await tools.invoke("add", {"a": 1, "b": 2}) == {"sum": 3}
        assert await tools.invoke("echo", {"x": 1}) == {"echo": {"x": 1}}

    @pytest.mark.asyncio
    async def test_unknown_tool(self, tools):
        with pytest.raises(ToolNotFoundError):
            await tools.invoke("nope", {})

    @pytest.mark.asyncio
    async def test_tool_errors_propagate(self, tools):
        with pytest.raises(RuntimeError, match="tool exploded"):
            await tools.invoke("explode", {})

    def test_metadata(self):
        registry = ToolRegistry()

        @registry.register("greet", description="Say hello")
        def greet(name: str, excited: bool = False) -> str:
            return f"Hello {name}"

        def shout(text):
            """Upper-case the text."""
            return text.upper()

        registry.add(shout)

        assert registry.get("greet").to_dict() == {
            "name": "greet",
            "description": "Say hello",
            "parameters": {"name": "str", "excited": "bool"},
            "async": False,
        }
        assert registry.get("shout").description == "Upper-case the text."
        assert registry.get("shout").parameters == {"text": "Any"}
        assert "shout" in registry and len(registry) == 2
        assert registry.unregister("shout") and "shout" not in registry
        assert registry.names() == ["greet"]
        assert not registry.unregister("shout")


class TestBuiltinTools:
    """Tests for the built-in tools."""

    def test_registered(self):
        for name in ("text_stats", "extract_keywords", "summarize_findings", "current_time"):
            assert name in tool_registry

    def test_text_stats(self):
        stats = text_stats("Solar is cheap. Wind is cheaper!")
        assert stats["words"] == 6
        assert stats["sentences"] == 2
        assert text_stats("")["avgWordLength"] == 0

    def test_extract_keywords(self):
        result = extract_keywords("Solar panels and solar farms; the panels are solar.", limit=2)
        assert result["keywords"] == [{"word": "solar", "count": 3}, {"word": "panels", "count": 2}]

    def test_summarize_findings(self):
        summary = summarize_findings(["Cheap panels", "cheap panels ", "Storage"], topic="solar")
        assert summary["count"] == 2
        assert summary["headline"] == "2 finding(s) on solar"


# ============================================================
# Text Analysis Workflow
# ============================================================

class TestTextAnalysisWorkflow:
    """The built-in text-analysis workflow run against the real tools."""

    @pytest.fixture
    def engine(self, make_engine):
        engine = make_engine()
        engine.tools = tool_registry
        return engine

    @pytest.mark.asyncio
    async def test_short_text(self, engine):
        state = await engine.start(TEXT_ANALYSIS, {"text": "Solar power. Solar panels are cheap.", "keywordLimit": 1})

        assert state.status == "completed"
        assert state.output == {
            "sizeLabel": "short",
            "words": 6,
            "keywords": [{"word": "solar", "count": 2}],
        }

    @pytest.mark.asyncio
    async def test_long_text(self, engine):
        state = await engine.start(TEXT_ANALYSIS, {"text": "energy " * 150})
        assert state.output["sizeLabel"] == "long"
        assert "label-long" in state.completed_nodes

    @pytest.mark.asyncio
    async def test_keyword_failure_is_tolerated(self, engine):
        """The keywords node continues on error; the output then lacks keywords."""
        workflow = copy.deepcopy(TEXT_ANALYSIS)
        workflow["nodes"][2]["config"]["toolName"] = "missing_tool"

        state = await engine.start(workflow, {"text": "Short text."})

        assert state.status == "completed"
        assert state.data["keywords"]["error"] is True
        assert "keywords" not in state.output
        assert state.errors[-1].node_id == "keywords"
