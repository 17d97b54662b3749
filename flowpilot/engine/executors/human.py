"""
Human node: pauses the execution until someone responds.
"""

from typing import Any, Dict, List, Optional
from datetime import datetime, timedelta

from flowpilot.engine.definition import Node, NodeType
from flowpilot.engine.errors import InvalidResponseError
from flowpilot.engine.executors.base import NodeExecutor, NodeResult
from flowpilot.engine.resolver import localize, resolve
from flowpilot.engine.schema import check_schema, validation_errors
from flowpilot.engine.services import ExecutionServices
from flowpilot.engine.state import Checkpoint, CheckpointOption, ExecutionState


DEFAULT_OPTIONS = [{"value": "continue", "label": "Continue", "style": "primary"}]


def response_key(node_id: str) -> str:
    """Data key the response to a human node is stored under."""
    return f"humanResponse_{node_id}"


class HumanExecutor(NodeExecutor):
    """
    Handles ``human`` nodes.

    Config:
        message: Prompt for the human (templated, localizable)
        options: [{value, label, style, description}]; defaults to a single
            ``continue`` option
        inputSchema: JSON Schema for the data submitted with the response
        showData: Paths whose values are shown alongside the message
        timeout: Milliseconds until the checkpoint expires
    """

    node_type = NodeType.HUMAN.value

    def validate_config(self, node: Node) -> List[str]:
        config = node.config
        errors = []
        if not config.get("message"):
            errors.append(f"Human node '{node.id}': message is required")

        options = config.get("options")
        if options is not None:
            if not isinstance(options, list) or not options:
                errors.append(f"Human node '{node.id}': options must be a non-empty list")
            else:
                values = [o.get("value") if isinstance(o, dict) else None for o in options]
                if any(not isinstance(v, str) or not v for v in values):
                    errors.append(f"Human node '{node.id}': every option needs a string value")
                elif len(set(values)) != len(values):
                    errors.append(f"Human node '{node.id}': option values must be unique")

        if config.get("inputSchema") is not None:
            for problem in check_schema(config["inputSchema"]):
                errors.append(f"Human node '{node.id}': invalid inputSchema: {problem}")
        return errors

    def _options(self, config: Dict[str, Any], language: str) -> List[CheckpointOption]:
        options = config.get("options") or DEFAULT_OPTIONS
        return [
            CheckpointOption(
                value=option["value"],
                label=localize(option.get("label"), language) or option["value"],
                style=option.get("style", "secondary"),
                description=localize(option.get("description"), language),
            )
            for option in options
        ]

    async def execute(
        self,
        node: Node,
        state: ExecutionState,
        services: ExecutionServices,
    ) -> NodeResult:
        config = node.config
        language = services.language or state.language
        scope = state.resolution_scope()

        show_data = config.get("showData") or []
        display_data = {}
        for path in show_data:
            value = resolve(path, scope)
            if value is not None:
                key = path[2:] if path.startswith("$.") else path
                display_data[key.replace(".", "_")] = value

        created_at = datetime.now()
        timeout = config.get("timeout")
        checkpoint = Checkpoint(
            node_id=node.id,
            message=str(self.localized(config.get("message", ""), state, services) or ""),
            options=self._options(config, language),
            input_schema=config.get("inputSchema"),
            show_data=show_data,
            display_data=display_data,
            created_at=created_at,
            expires_at=created_at + timedelta(milliseconds=timeout) if timeout else None,
        )

        self.logger.info(f"Human node '{node.id}' created checkpoint {checkpoint.id}")

        return NodeResult(
            value={"awaitingHuman": True, "checkpointId": checkpoint.id},
            checkpoint=checkpoint,
        )

    def resume(
        self,
        node: Node,
        checkpoint: Checkpoint,
        response: Any,
        data: Optional[Dict[str, Any]] = None,
    ) -> NodeResult:
        """
        Validate a human response and turn it into a node result.

        Raises:
            InvalidResponseError: If the response is not an offered option,
                the checkpoint has expired, or the data fails the input schema
        """
        valid = checkpoint.option_values()
        if response not in valid:
            raise InvalidResponseError(
                f"Invalid response '{response}'. Valid options: {', '.join(valid)}",
                node_id=node.id,
            )

        if checkpoint.expires_at and datetime.now() > checkpoint.expires_at:
            raise InvalidResponseError(
                f"Checkpoint {checkpoint.id} expired at {checkpoint.expires_at.isoformat()}",
                node_id=node.id,
            )

        if data is not None and not isinstance(data, dict):
            raise InvalidResponseError("Response data must be an object", node_id=node.id)

        if checkpoint.input_schema:
            problems = validation_errors(checkpoint.input_schema, data or {})
            if problems:
                raise InvalidResponseError(
                    f"Invalid input data: {problems[0]}",
                    node_id=node.id,
                    details=problems,
                )

        record = {
            "checkpointId": checkpoint.id,
            "nodeId": node.id,
            "response": response,
            "data": data,
            "respondedAt": datetime.now().isoformat(),
        }

        output = dict(data or {})
        output[response_key(node.id)] = record

        self.logger.info(f"Human node '{node.id}' answered '{response}'")
        return NodeResult(output=output, value=record, branch=response)
