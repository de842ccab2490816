"""Tool descriptors supplied by the caller, and the results it sends back.

Tools are executed by the caller, never here. A descriptor only says what the
model may call; an :class:`ExecutedToolCall` reports what happened.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import AliasChoices, Field, model_validator

from conductor.models import Record

_EMPTY_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}


class ToolSpec(Record):
    """A callable skill: name, description and JSON-schema parameters.

    Accepts the flat form ``{name, description, parameters}`` (or
    ``parameterSchema``) as well as the nested chat-completions form
    ``{type: "function", function: {...}}``.
    """

    name: str
    description: str = ""
    parameters: dict[str, Any] = Field(
        default_factory=lambda: dict(_EMPTY_SCHEMA),
        validation_alias=AliasChoices("parameters", "parameterSchema", "parameter_schema"),
    )

    @model_validator(mode="before")
    @classmethod
    def _unwrap_function(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("function"), dict):
            return data["function"]
        return data

    def chat_schema(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def responses_schema(self) -> dict[str, Any]:
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


class ExecutedToolCall(Record):
    """A tool call the caller has run, with its result."""

    call_id: str
    name: str
    arguments: str = "{}"
    result: Any = None

    @model_validator(mode="before")
    @classmethod
    def _encode_arguments(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("arguments"), dict | list):
            return {**data, "arguments": json.dumps(data["arguments"])}
        return data

    @property
    def output(self) -> str:
        """The result as text: strings pass through, anything else is JSON."""
        if isinstance(self.result, str):
            return self.result
        return json.dumps(self.result)
