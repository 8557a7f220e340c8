"""Runtime validation of tool arguments against a tool's input schema.

The input schema is translated by recursive descent into a pydantic type over
a closed set of kinds: string, number/integer, boolean, null, array and
object. Any other shape validates as "accept anything".
"""

import logging
import re
from typing import Annotated, Any, Literal, get_origin

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    StrictBool,
    TypeAdapter,
    ValidationError,
    create_model,
)

from .errors import ToolValidationError

logger = logging.getLogger(__name__)

UNSUPPORTED_KEYWORDS = ("oneOf", "anyOf", "allOf", "not", "$ref")

_ROOT_PATH = "(root)"


class _ArgumentsBase(BaseModel):
    model_config = ConfigDict(extra="allow", regex_engine="python-re")


def _model_name(path: str) -> str:
    cleaned = re.sub(r"[^0-9a-zA-Z_]", "_", path or "Arguments")
    return f"Args_{cleaned}"


def _string_type(schema: dict):
    enum = schema.get("enum")
    if isinstance(enum, list) and enum and all(isinstance(v, str) for v in enum):
        return Literal[tuple(enum)]
    constraints = {}
    if isinstance(schema.get("pattern"), str):
        constraints["pattern"] = schema["pattern"]
    if isinstance(schema.get("minLength"), int):
        constraints["min_length"] = schema["minLength"]
    if isinstance(schema.get("maxLength"), int):
        constraints["max_length"] = schema["maxLength"]
    return Annotated[str, Field(strict=True, **constraints)]


def _number_type(schema: dict, integer: bool):
    constraints = {}
    for key, name in (
        ("minimum", "ge"),
        ("maximum", "le"),
        ("exclusiveMinimum", "gt"),
        ("exclusiveMaximum", "lt"),
    ):
        value = schema.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            constraints[name] = value
    if integer:
        return Annotated[int, Field(strict=True, **constraints), BeforeValidator(_whole_float)]
    return Annotated[float, Field(strict=True, **constraints)]


def _whole_float(value):
    # 5.0 is an integer in JSON.
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def build_type(schema: Any, path: str = ""):
    """Translate one schema node into a pydantic-compatible type.

    Args:
        schema: JSON-schema-like node
        path: Dotted location, used for naming generated models

    Returns:
        A type usable as a pydantic annotation
    """
    if not isinstance(schema, dict):
        return Any

    unsupported = [key for key in UNSUPPORTED_KEYWORDS if key in schema]
    if unsupported:
        logger.warning(
            f"Schema at '{path or _ROOT_PATH}' uses unsupported keyword(s) "
            f"{', '.join(unsupported)}; accepting any value"
        )
        return Any

    kind = schema.get("type")
    if kind == "string":
        return _string_type(schema)
    if kind in ("number", "integer"):
        return _number_type(schema, integer=kind == "integer")
    if kind == "boolean":
        return StrictBool
    if kind == "null":
        return None
    if kind == "array":
        item_type = build_type(schema.get("items"), f"{path}[]")
        constraints = {}
        if isinstance(schema.get("minItems"), int):
            constraints["min_length"] = schema["minItems"]
        if isinstance(schema.get("maxItems"), int):
            constraints["max_length"] = schema["maxItems"]
        return Annotated[list[item_type], Field(**constraints)]
    if kind == "object" or (kind is None and isinstance(schema.get("properties"), dict)):
        return _object_type(schema, path)
    return Any


def _object_type(schema: dict, path: str):
    properties = schema.get("properties")
    if not isinstance(properties, dict) or not properties:
        return dict[str, Any]

    required = set(schema.get("required") or [])
    fields = {}
    for index, (prop_name, prop_schema) in enumerate(properties.items()):
        prop_path = f"{path}.{prop_name}" if path else prop_name
        prop_type = build_type(prop_schema, prop_path)
        # Generated field names avoid clashing with BaseModel attributes; the
        # alias keeps the real property name for input and error locations.
        # The None default is never validated: omission passes, explicit null does not.
        if prop_name in required:
            fields[f"field_{index}"] = (prop_type, Field(..., alias=prop_name))
        else:
            fields[f"field_{index}"] = (prop_type, Field(None, alias=prop_name))
    return create_model(_model_name(path), __base__=_ArgumentsBase, **fields)


def _is_model(tp) -> bool:
    return get_origin(tp) is None and isinstance(tp, type) and issubclass(tp, BaseModel)


class ArgumentValidator:
    """Validator built once from a tool's input schema."""

    def __init__(self, schema: Any):
        self.schema = schema
        root_type = build_type(schema)
        if _is_model(root_type):
            self._adapter = TypeAdapter(root_type)
        else:
            self._adapter = TypeAdapter(root_type, config=ConfigDict(regex_engine="python-re"))

    def validate(self, arguments: Any) -> list[str]:
        """Validate arguments.

        Returns:
            list[str]: ``path: message`` for every failing field. Empty if valid.
        """
        try:
            self._adapter.validate_python(arguments)
        except ValidationError as e:
            return format_issues(e)
        return []

    def check(self, arguments: Any) -> None:
        """Raise ToolValidationError listing every failing field."""
        issues = self.validate(arguments)
        if issues:
            raise ToolValidationError(", ".join(issues), issues)


def format_issues(error: ValidationError) -> list[str]:
    issues = []
    for item in error.errors():
        loc = [str(p) for p in item.get("loc", ())]
        # Union members and constrained types add their own loc segments.
        loc = [p for p in loc if not p.startswith(("function-", "constrained-"))]
        path = ".".join(loc) or _ROOT_PATH
        issues.append(f"{path}: {item.get('msg', 'Invalid value')}")
    return issues


def build_validator(schema: Any) -> ArgumentValidator:
    return ArgumentValidator(schema)
