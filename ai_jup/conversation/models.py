"""Pydantic models for the inbound prompt request and its context bundle."""

from __future__ import annotations

from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    StrictStr,
    field_validator,
)


class VariableInfo(BaseModel):
    """Textual snapshot of one interpreter variable."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str | None = None
    type: str | None = None
    repr: StrictStr = Field(..., description="repr() of the value, as captured by the client")


class ParameterInfo(BaseModel):
    """One declared parameter of an interpreter function."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    type: str | None = Field(default=None, description="Annotation or JSON type name")
    description: str | None = None
    default: Any = None
    required: bool | None = None


class FunctionInfo(BaseModel):
    """Signature and description of an interpreter function offered as a tool.

    ``parameters`` is ``None`` when the parameter list is unknown; an empty
    mapping means the function is known to take no arguments.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str | None = None
    signature: str = ""
    docstring: str = ""
    parameters: dict[str, ParameterInfo] | None = None

    @property
    def parameter_names(self) -> frozenset[str] | None:
        if self.parameters is None:
            return None
        return frozenset(self.parameters)


class ContextBundle(BaseModel):
    """Caller-supplied snapshot of notebook and interpreter state."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    preceding_code: StrictStr = ""
    variables: dict[str, VariableInfo] = Field(default_factory=dict)
    functions: dict[str, FunctionInfo] = Field(default_factory=dict)

    @field_validator("variables", mode="before")
    @classmethod
    def _coerce_variable_reprs(cls, value: Any) -> Any:
        # Plain ``name -> repr`` mappings are accepted alongside VariableInfo objects
        if isinstance(value, dict):
            return {k: {"repr": v} if isinstance(v, str) else v for k, v in value.items()}
        return value

    @field_validator("functions", mode="before")
    @classmethod
    def _coerce_function_descriptions(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {k: {"docstring": v} if isinstance(v, str) else v for k, v in value.items()}
        return value

    def variable_values(self) -> dict[str, str]:
        return {name: info.repr for name, info in self.variables.items()}

    def total_chars(self) -> int:
        total = len(self.preceding_code)
        for name, var in self.variables.items():
            total += len(name) + len(var.repr)
        for name, fn in self.functions.items():
            total += len(name) + len(fn.signature) + len(fn.docstring)
        return total

    def total_items(self) -> int:
        return len(self.variables) + len(self.functions)


class PromptRequestBody(BaseModel):
    """Wire shape of ``POST /prompt``; validated further by RequestValidator."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    prompt: StrictStr
    model: StrictStr | None = None
    session_id: StrictStr | None = Field(
        default=None,
        validation_alias=AliasChoices("session_id", "kernel_id"),
    )
    max_steps: StrictInt | None = None
    context: ContextBundle | None = None


class PromptRequest(BaseModel):
    """An accepted prompt request. Immutable once accepted."""

    model_config = ConfigDict(frozen=True)

    prompt: str = Field(..., description="Processed prompt text sent to the model")
    raw_prompt: str
    model: str
    session_id: str | None = None
    max_steps: int
    context: ContextBundle = Field(default_factory=ContextBundle)
    principal: str = ""
