"""
Base classes for tools.

A tool's input is a pydantic model; the JSON schema offered to the model is
derived from it, and arguments coming back from the model are parsed with it.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError
from ..llm.base import ToolDefinition

ResultKind = Literal["read", "preview", "commit", "handoff", "error"]


@dataclass
class ToolResult:
    """Result from a tool execution."""

    success: bool
    output: str = ""
    data: Any = None
    error: str | None = None
    kind: ResultKind = "read"
    tool_name: str = ""
    arguments: dict[str, Any] = field(default_factory=dict)

    def for_model(self) -> str:
        """Content returned to the model as the tool result."""
        if not self.success:
            return f"Error: {self.error}"
        if self.data is not None:
            return json.dumps(self.data, default=str)
        return self.output


class ToolInput(BaseModel):
    """Base for read-only tool inputs. Unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore")


class ConfirmableInput(ToolInput):
    """Base for mutating tool inputs."""

    confirmed: bool = Field(
        default=False,
        description=(
            "Leave false to get a preview. Set to true only after the user has "
            "explicitly confirmed the preview, repeating the same arguments."
        ),
    )


Validator = Callable[[Any], list[str]]


@dataclass
class Tool:
    """A read-only tool bound to the current run."""

    name: str
    description: str
    input_model: type[ToolInput]
    handler: Callable[[Any], Awaitable[Any]] | None = None
    validator: Validator | None = None

    @property
    def mutating(self) -> bool:
        return False

    def get_parameters_schema(self) -> dict[str, Any]:
        """JSON Schema derived from the input model."""
        schema = self.input_model.model_json_schema()
        schema.pop("title", None)
        return schema

    def to_definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.get_parameters_schema(),
        )

    def parse(self, arguments: dict[str, Any]) -> Any:
        """Validate raw model arguments against the schema and domain rules.

        Raises ValidationError with one message per problem.
        """
        try:
            params = self.input_model.model_validate(arguments or {})
        except PydanticValidationError as e:
            raise ValidationError(_format_errors(e)) from e

        if self.validator is not None:
            problems = self.validator(params)
            if problems:
                raise ValidationError(problems)

        return params


@dataclass
class MutatingTool(Tool):
    """A tool that changes backend data. Always goes through preview and commit."""

    preview: Callable[[Any], Awaitable[Any]] | None = None
    commit: Callable[[Any], Awaitable[Any]] | None = None

    @property
    def mutating(self) -> bool:
        return True


class HandoffInput(ToolInput):
    agent: str = Field(description="Name of the agent to hand off to")
    instruction: str = Field(
        default="",
        description="Optional focused instruction for the receiving agent",
    )


@dataclass
class HandoffRequest:
    target: str
    instruction: str = ""


@dataclass
class HandoffTool:
    """The handoff primitive: transfers work to another agent."""

    targets: list[str]
    name: str = "handoff"
    description: str = "Hand the request off to the specialist agent best suited to answer it."

    @property
    def mutating(self) -> bool:
        return False

    def to_definition(self) -> ToolDefinition:
        schema = HandoffInput.model_json_schema()
        schema.pop("title", None)
        schema["properties"]["agent"]["enum"] = list(self.targets)
        return ToolDefinition(name=self.name, description=self.description, parameters=schema)

    def parse(self, arguments: dict[str, Any]) -> HandoffRequest:
        try:
            params = HandoffInput.model_validate(arguments or {})
        except PydanticValidationError as e:
            raise ValidationError(_format_errors(e)) from e

        if params.agent not in self.targets:
            raise ValidationError(
                f"Unknown agent '{params.agent}'. Valid agents: {', '.join(self.targets)}"
            )
        return HandoffRequest(target=params.agent, instruction=params.instruction)


AnyTool = Tool | HandoffTool


def _format_errors(error: PydanticValidationError) -> list[str]:
    messages = []
    for err in error.errors():
        location = ".".join(str(part) for part in err.get("loc", ()))
        text = err.get("msg", "invalid value")
        messages.append(f"{location}: {text}" if location else text)
    return messages
