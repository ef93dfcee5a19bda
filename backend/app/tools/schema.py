"""
Parameter validation for tool calls.

A tool's JSON-schema-like ``parameters`` block is compiled once, at
registration, into a pydantic model. Validation collects every issue
instead of stopping at the first one, so the caller can ask for all missing
or malformed fields in a single turn.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Any, Dict, List, Literal, Mapping, Tuple, Type

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PydanticUserError,
    StrictBool,
    StrictStr,
    ValidationError,
    create_model,
)
from pydantic_core import PydanticCustomError

from app.tools.exceptions import InvalidToolDefinitionError


def _numeric(value: Any) -> Any:
    # bool is an int subclass; it is never a number here.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise PydanticCustomError("number_type", "Input should be a number")
    return value


Number = Annotated[float, BeforeValidator(_numeric)]
# Lax int on top of the numeric check: 3.0 passes, 3.5 is rejected.
Integer = Annotated[int, BeforeValidator(_numeric)]

TYPE_MAP: Dict[str, Any] = {
    "string": StrictStr,
    "number": Number,
    "integer": Integer,
    "boolean": StrictBool,
    "object": Dict[str, Any],
    "array": List[Any],
}

ERROR_CODES = {
    "missing": "required",
    "literal_error": "enum",
    "greater_than": "range",
    "greater_than_equal": "range",
    "less_than": "range",
    "less_than_equal": "range",
    "string_too_short": "length",
    "string_too_long": "length",
    "too_short": "length",
    "too_long": "length",
}


class ToolParams(BaseModel):
    model_config = ConfigDict(extra="ignore")


@dataclass(frozen=True)
class ValidationIssue:
    field: str
    message: str
    code: str  # required, type, enum, range, length

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "message": self.message, "code": self.code}


def _field_spec(tool_name: str, name: str, prop: Any, required: bool) -> Tuple[Any, Any]:
    if not isinstance(prop, Mapping):
        raise InvalidToolDefinitionError(tool_name, f"property '{name}' must be a mapping")
    prop_type = prop.get("type")
    if prop_type not in TYPE_MAP:
        raise InvalidToolDefinitionError(tool_name, f"property '{name}' has unsupported type {prop_type!r}")

    constraints: Dict[str, Any] = {}
    enum = prop.get("enum")
    if enum is not None:
        annotation = Literal[tuple(enum)]
    else:
        annotation = TYPE_MAP[prop_type]
        if prop_type in ("number", "integer"):
            constraints.update(ge=prop.get("minimum"), le=prop.get("maximum"))
        if prop_type in ("string", "array"):
            constraints.update(min_length=prop.get("minLength"), max_length=prop.get("maxLength"))
    constraints = {k: v for k, v in constraints.items() if v is not None}

    default = ... if required else prop.get("default")
    return annotation, Field(default=default, description=prop.get("description"), **constraints)


class CompiledSchema:
    def __init__(self, model: Type[BaseModel], defaults: Mapping[str, Any]):
        self.model = model
        self.defaults = dict(defaults)

    @classmethod
    def compile(cls, tool_name: str, schema: Any) -> "CompiledSchema":
        """Build the validator model; malformed schemas raise InvalidToolDefinitionError."""
        if not isinstance(schema, Mapping) or schema.get("type") != "object":
            raise InvalidToolDefinitionError(tool_name, "parameters must be an object schema")

        properties = schema.get("properties") or {}
        if not isinstance(properties, Mapping):
            raise InvalidToolDefinitionError(tool_name, "properties must be a mapping")

        required = list(schema.get("required") or [])
        unknown = [name for name in required if name not in properties]
        if unknown:
            raise InvalidToolDefinitionError(tool_name, f"required fields not declared: {unknown}")

        fields: Dict[str, Any] = {}
        defaults: Dict[str, Any] = {}
        for name, prop in properties.items():
            fields[name] = _field_spec(tool_name, name, prop, name in required)
            if "default" in prop:
                defaults[name] = prop["default"]

        try:
            model = create_model(f"{tool_name}_params", __base__=ToolParams, **fields)
        except (PydanticUserError, TypeError, ValueError) as e:
            raise InvalidToolDefinitionError(tool_name, str(e)) from e
        return cls(model, defaults)

    def validate(self, params: Mapping[str, Any]) -> List[ValidationIssue]:
        # None counts as absent, so a null required field reports as missing.
        present = {name: value for name, value in params.items() if value is not None}
        try:
            self.model.model_validate(present)
        except ValidationError as exc:
            return [self._issue(error) for error in exc.errors()]
        return []

    @staticmethod
    def _issue(error: Mapping[str, Any]) -> ValidationIssue:
        name = str(error["loc"][0]) if error.get("loc") else ""
        code = ERROR_CODES.get(error["type"], "type")
        if code == "required":
            return ValidationIssue(name, f"{name} is required", code)
        return ValidationIssue(name, f"{name}: {error['msg']}", code)

    def apply_defaults(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        result = dict(params)
        for name, default in self.defaults.items():
            if result.get(name) is None:
                result[name] = default
        return result
