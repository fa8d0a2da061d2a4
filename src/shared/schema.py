"""JSON Schema helpers for tool argument schemas."""

from typing import Any

from jsonschema import Draft7Validator


def compile_schema(schema: dict[str, Any]) -> Draft7Validator:
    """
    Check a tool argument schema and build its validator.

    Raises:
        jsonschema.SchemaError: If the schema itself is malformed
    """
    Draft7Validator.check_schema(schema)
    return Draft7Validator(schema)


def collect_errors(validator: Draft7Validator, data: Any) -> list[str]:
    """Return readable validation errors, ordered by location."""
    errors = sorted(validator.iter_errors(data), key=lambda e: [str(p) for p in e.path])
    return [
        f"{'.'.join(str(p) for p in e.path)}: {e.message}" if e.path else e.message
        for e in errors
    ]


def object_schema(
    properties: dict[str, dict[str, Any]],
    required: list[str] | None = None
) -> dict[str, Any]:
    """Build the object schema for a tool's arguments."""
    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


def string_property(description: str, **extra: Any) -> dict[str, Any]:
    """Schema for a described string property."""
    return {"type": "string", "description": description, **extra}
