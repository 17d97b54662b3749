"""
Tests for the variable resolver.
"""

import pytest

from flowpilot.engine.resolver import (
    localize,
    parse_path,
    render_template,
    resolve,
    resolve_all,
    set_path,
)
from flowpilot.engine.state import ExecutionState


@pytest.fixture
def state() -> ExecutionState:
    return ExecutionState(
        workflow_id="wf",
        data={
            "user": {"name": "Ada", "tags": ["admin", "ops"]},
            "items": [{"id": "a1"}, {"id": "b2"}, {"id": "c3"}],
            "count": 3,
            "flag": False,
        },
        node_outputs={"planner": {"queries": ["solar", "wind"]}},
        context={"language": "de", "user": "u1"},
    )


# ============================================================
# Path Tests
# ============================================================

class TestPaths:
    """Tests for path parsing and lookup."""

    def test_parse_path_forms(self):
        """Dotted, bracketed and quoted segments are all supported."""
        assert parse_path("$.data.items[0].id") == ["data", "items", 0, "id"]
        assert parse_path("items.0.id") == ["items", "0", "id"]
        assert parse_path("$.data['odd key']") == ["data", "odd key"]
        assert parse_path("not a path!") is None

    def test_resolve_nested(self, state):
        """Nested dict and list access."""
        assert resolve("$.data.user.name", state) == "Ada"
        assert resolve("$.data.items[1].id", state) == "b2"
        assert resolve("$.data.items.2.id", state) == "c3"
        assert resolve("$.data.user.tags[0]", state) == "admin"

    def test_resolve_other_roots(self, state):
        """nodeOutputs, context and ids are resolvable."""
        assert resolve("$.nodeOutputs.planner.queries[0]", state) == "solar"
        assert resolve("$.context.language", state) == "de"
        assert resolve("$.executionId", state) == state.execution_id
        assert resolve("$.workflowId", state) == "wf"

    def test_missing_paths_resolve_to_none(self, state):
        """Missing data never raises."""
        assert resolve("$.data.nope", state) is None
        assert resolve("$.data.items[10].id", state) is None
        assert resolve("$.data.user.name.first", state) is None
        assert resolve("$.unknownRoot.x", state) is None

    def test_falsy_values_survive(self, state):
        """False and 0 are values, not missing."""
        assert resolve("$.data.flag", state) is False

    def test_length_of_list(self, state):
        """`.length` on a list gives its size."""
        assert resolve("$.data.items.length", state) == 3

    def test_plain_mapping_source(self):
        """A mapping can be used instead of a state."""
        assert resolve("result.branch", {"result": {"branch": "true"}}) == "true"


# ============================================================
# Template Tests
# ============================================================

class TestTemplates:
    """Tests for template rendering."""

    def test_interpolation(self, state):
        """Tokens inside text are interpolated relative to data."""
        assert render_template("Hello {{user.name}}!", state) == "Hello Ada!"

    def test_single_token_keeps_type(self, state):
        """A string that is exactly one token returns the raw value."""
        assert render_template("{{items}}", state) == state.data["items"]
        assert render_template("{{count}}", state) == 3

    def test_exact_path_keeps_type(self, state):
        """A string that is exactly one path returns the raw value."""
        assert render_template("$.data.user.tags", state) == ["admin", "ops"]

    def test_dollar_text_is_not_a_path(self, state):
        """Only strings rooted at a known scope key are read as paths."""
        assert render_template("$.99", state) == "$.99"
        assert render_template("$.price", state) == "$.price"
        assert render_template("$.context.language", state) == "de"

    def test_missing_token_renders_empty(self, state):
        """Missing values interpolate as empty strings."""
        assert render_template("[{{nothing}}]", state) == "[]"

    def test_objects_render_as_json(self, state):
        """Objects embedded in text are JSON."""
        assert render_template("tags={{user.tags}}", state) == 'tags=["admin", "ops"]'

    def test_absolute_and_dollar_brace_tokens(self, state):
        """`{{$.path}}` and `${$.path}` are absolute."""
        assert render_template("{{$.context.user}}", state) == "u1"
        assert render_template("lang=${$.context.language}", state) == "lang=de"

    def test_resolve_all_nested(self, state):
        """Every string in a nested structure is resolved."""
        template = {
            "query": "$.nodeOutputs.planner.queries[0]",
            "meta": ["{{user.name}}", 42, {"n": "count={{count}}"}],
        }
        assert resolve_all(template, state) == {
            "query": "solar",
            "meta": ["Ada", 42, {"n": "count=3"}],
        }

    def test_resolve_all_is_pure(self, state):
        """Resolution does not touch the state or the template."""
        template = {"x": "{{user.name}}"}
        before = state.to_dict()
        resolve_all(template, state)
        assert template == {"x": "{{user.name}}"}
        assert state.to_dict()["data"] == before["data"]


# ============================================================
# Localization and Assignment Tests
# ============================================================

class TestLocalizeAndSetPath:
    """Tests for localized values and dotted assignment."""

    def test_localize_fallbacks(self):
        """Requested language, then English, then the first entry."""
        text = {"en": "Hello", "de": "Hallo"}
        assert localize(text, "de") == "Hallo"
        assert localize(text, "fr") == "Hello"
        assert localize({"fr": "Bonjour"}, "de") == "Bonjour"
        assert localize("plain", "de") == "plain"

    def test_set_path_creates_objects(self):
        """Dotted targets create nested objects."""
        target = {}
        set_path(target, "result.summary.text", "done")
        assert target == {"result": {"summary": {"text": "done"}}}

    def test_set_path_strips_data_prefix(self):
        """`$.data.` and `data.` prefixes address the data bag itself."""
        target = {}
        set_path(target, "$.data.x", 1)
        set_path(target, "data.y", 2)
        assert target == {"x": 1, "y": 2}
