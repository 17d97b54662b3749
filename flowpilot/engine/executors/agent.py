"""
Agent node: an LLM call, optionally with a tool-use loop.

The node resolves its system and user prompts against the state, asks the
completion service for a reply and, while the model keeps requesting tools
and the iteration budget allows, executes those tools and feeds the results
back. Text content is accumulated across rounds.
"""

from typing import Any, Dict, List, Optional
import json
import re

from flowpilot.engine.definition import Node, NodeType
from flowpilot.engine.errors import ExternalCallError
from flowpilot.engine.executors.base import NodeExecutor, NodeResult
from flowpilot.engine.schema import check_schema, validation_errors
from flowpilot.engine.services import (
    CompletionRequest,
    CompletionResponse,
    ExecutionServices,
    ToolCall,
)
from flowpilot.engine.state import ExecutionState


_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_EMBEDDED_JSON_RE = re.compile(r"\{[\s\S]*\}|\[[\s\S]*\]")


def parse_structured_output(content: Optional[str]) -> Any:
    """
    Extract JSON from model output.

    Tries the whole text, then a fenced ```json block, then the outermost
    embedded object or array.

    Returns:
        The parsed value, or the original string if no JSON could be parsed
    """
    if not content:
        return None

    text = content.strip()
    candidates = []
    if text.startswith("{") or text.startswith("["):
        candidates.append(text)
    fenced = _FENCED_JSON_RE.search(text)
    if fenced:
        candidates.append(fenced.group(1).strip())
    embedded = _EMBEDDED_JSON_RE.search(text)
    if embedded:
        candidates.append(embedded.group(0))

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    return content


class AgentExecutor(NodeExecutor):
    """
    Handles ``agent`` nodes.

    Config:
        system: System prompt (templated, localizable)
        prompt: User prompt (templated, localizable)
        modelId: Model to use (passed through to the completion service)
        tools: Names of tools the model may call
        maxIterations: Tool-use rounds (default from settings)
        outputVariable: Data key for the result
        outputSchema: JSON Schema; the reply is parsed as JSON and validated
        temperature, maxTokens: Passed through as completion options
    """

    node_type = NodeType.AGENT.value

    def validate_config(self, node: Node) -> List[str]:
        config = node.config
        errors = []
        if not config.get("prompt") and not config.get("system"):
            errors.append(f"Agent node '{node.id}': prompt or system is required")
        tools = config.get("tools")
        if tools is not None and not (
            isinstance(tools, list) and all(isinstance(t, str) for t in tools)
        ):
            errors.append(f"Agent node '{node.id}': tools must be a list of tool names")
        max_iterations = config.get("maxIterations")
        if max_iterations is not None and (not isinstance(max_iterations, int) or max_iterations < 1):
            errors.append(f"Agent node '{node.id}': maxIterations must be a positive integer")
        if config.get("outputSchema") is not None:
            for problem in check_schema(config["outputSchema"]):
                errors.append(f"Agent node '{node.id}': invalid outputSchema: {problem}")
        return errors

    def _build_messages(
        self,
        config: Dict[str, Any],
        state: ExecutionState,
        services: ExecutionServices,
    ) -> List[Dict[str, Any]]:
        messages = []

        system = self.localized(config.get("system"), state, services)
        if system:
            messages.append({"role": "system", "content": str(system)})

        prompt = self.localized(config.get("prompt"), state, services)
        if not prompt:
            prompt = state.data.get("input") or state.data.get("message")
        if prompt:
            content = prompt if isinstance(prompt, str) else json.dumps(prompt, default=str)
            messages.append({"role": "user", "content": content})

        return messages

    async def _complete(
        self,
        node: Node,
        services: ExecutionServices,
        request: CompletionRequest,
    ) -> CompletionResponse:
        try:
            return await services.completion.complete(request)
        except ExternalCallError:
            raise
        except Exception as e:
            raise ExternalCallError(
                f"Completion failed for agent node '{node.id}': {e}",
                node_id=node.id,
            ) from e

    async def _run_tool(
        self,
        call: ToolCall,
        allowed: List[str],
        services: ExecutionServices,
    ) -> Dict[str, Any]:
        if call.name not in allowed or services.tools is None:
            payload: Any = {"error": True, "message": f"Tool '{call.name}' is not available"}
        else:
            try:
                payload = await services.tools.invoke(call.name, call.parsed_arguments())
            except Exception as e:
                # The model sees the failure and may recover
                self.logger.warning(f"Tool '{call.name}' failed inside agent loop: {e}")
                payload = {"error": True, "message": str(e)}

        return {
            "role": "tool",
            "tool_call_id": call.id,
            "name": call.name,
            "content": payload if isinstance(payload, str) else json.dumps(payload, default=str),
        }

    async def execute(
        self,
        node: Node,
        state: ExecutionState,
        services: ExecutionServices,
    ) -> NodeResult:
        config = node.config

        if services.completion is None:
            raise ExternalCallError(
                f"No completion service configured for agent node '{node.id}'",
                node_id=node.id,
            )

        messages = self._build_messages(config, state, services)
        system = messages[0]["content"] if messages and messages[0]["role"] == "system" else None
        prompt = messages[-1]["content"] if messages and messages[-1]["role"] == "user" else ""

        tools = list(config.get("tools") or [])
        max_iterations = config.get("maxIterations") or services.agent_max_iterations
        options = {
            "temperature": config.get("temperature", 0.7),
            "maxTokens": config.get("maxTokens", 4096),
        }

        content = ""
        iteration = 0
        tool_rounds = 0
        while iteration < max_iterations:
            iteration += 1
            self.logger.debug(f"Agent node '{node.id}' iteration {iteration} ({len(messages)} messages)")

            response = await self._complete(
                node,
                services,
                CompletionRequest(
                    prompt=prompt,
                    system=system,
                    model_id=config.get("modelId"),
                    tools=tools,
                    output_schema=config.get("outputSchema"),
                    messages=list(messages),
                    options=options,
                ),
            )

            if response.content:
                content += response.content

            if not response.tool_calls or not tools:
                break

            tool_rounds += 1
            messages.append({
                "role": "assistant",
                "content": response.content or None,
                "tool_calls": [
                    {"id": c.id, "name": c.name, "arguments": c.parsed_arguments()}
                    for c in response.tool_calls
                ],
            })
            for call in response.tool_calls:
                messages.append(await self._run_tool(call, tools, services))
        else:
            self.logger.warning(f"Max iterations ({max_iterations}) reached for agent node '{node.id}'")

        output: Any = content
        schema = config.get("outputSchema")
        if schema:
            output = parse_structured_output(content)
            if isinstance(output, str):
                self.logger.warning(
                    f"Could not parse structured output for agent node '{node.id}', keeping raw text"
                )
            else:
                problems = validation_errors(schema, output)
                if problems:
                    self.logger.warning(
                        f"Agent node '{node.id}' output does not match its schema: {problems}"
                    )

        self.logger.info(
            f"Agent node '{node.id}' completed after {iteration} iteration(s), "
            f"{tool_rounds} tool round(s)"
        )

        output_variable = config.get("outputVariable")
        return NodeResult(
            output={output_variable: output} if output_variable else {},
            value=output,
        )
