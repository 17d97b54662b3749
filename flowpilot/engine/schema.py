"""
JSON Schema helpers for agent output and human input validation.
"""

from typing import Any, Dict, List
import json
import threading

from jsonschema.exceptions import SchemaError, ValidationError
from jsonschema.validators import Draft202012Validator, validator_for


_validator_cache: Dict[str, Any] = {}
_cache_lock = threading.Lock()


def get_validator(schema: Dict[str, Any]):
    """Compile (and cache) a validator for ``schema``."""
    key = json.dumps(schema, sort_keys=True, separators=(",", ":"), default=str)
    with _cache_lock:
        validator = _validator_cache.get(key)
        if validator is None:
            validator_cls = validator_for(schema, default=Draft202012Validator)
            validator = validator_cls(schema)
            _validator_cache[key] = validator
    return validator


def format_validation_error(error: ValidationError) -> str:
    location = "/".join(str(part) for part in error.absolute_path)
    if location:
        return f"{location}: {error.message}"
    return error.message


def validation_errors(schema: Dict[str, Any], instance: Any) -> List[str]:
    """
    Validate ``instance`` and return readable error messages.

    Returns:
        List of problems (empty if valid)
    """
    validator = get_validator(schema)
    errors = sorted(validator.iter_errors(instance), key=lambda e: list(e.absolute_path))
    return [format_validation_error(e) for e in errors]


def check_schema(schema: Any) -> List[str]:
    """Ensure ``schema`` is itself a valid JSON Schema."""
    if not isinstance(schema, dict):
        return ["schema must be an object"]
    try:
        validator_for(schema, default=Draft202012Validator).check_schema(schema)
    except SchemaError as e:
        return [e.message]
    return []
