"""
Builds pydantic models from function-calling parameter schemas so tool
arguments can be validated before a handler sees them.

Accepts both provider spellings of JSON-schema types ("OBJECT" / "object").
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError, create_model

_TYPE_MAP: Dict[str, Any] = {
    "string": str,
    "integer": int,
    "number": float,
    "boolean": bool,
    "array": list,
    "object": dict,
}


class _ArgsBase(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


def _python_type(schema: Dict[str, Any]) -> Any:
    enum = schema.get("enum")
    if enum:
        return Literal[tuple(enum)]

    kind = str(schema.get("type") or "string").lower()
    if kind == "array":
        items = schema.get("items")
        if isinstance(items, dict) and items:
            return List[_python_type(items)]
        return list
    return _TYPE_MAP.get(kind, Any)


def build_args_model(tool_name: str, parameters: Optional[Dict[str, Any]]) -> Optional[Type[BaseModel]]:
    """Return a model for `parameters`, or None when there is nothing to check."""
    if not parameters:
        return None
    properties = parameters.get("properties") or {}
    required = set(parameters.get("required") or [])
    if not properties and not required:
        return None

    fields: Dict[str, Tuple[Any, Any]] = {}
    for index, (prop_name, prop_schema) in enumerate(properties.items()):
        py_type = _python_type(prop_schema if isinstance(prop_schema, dict) else {})
        description = prop_schema.get("description") if isinstance(prop_schema, dict) else None
        # Positional field names keep arbitrary property names (e.g. "json", "_id") out of pydantic's namespace.
        if prop_name in required:
            fields[f"f{index}"] = (py_type, Field(..., alias=prop_name, description=description))
        else:
            fields[f"f{index}"] = (Optional[py_type], Field(None, alias=prop_name, description=description))

    # Required names without a property entry still have to be present.
    offset = len(fields)
    for index, prop_name in enumerate(sorted(required - set(properties))):
        fields[f"f{offset + index}"] = (Any, Field(..., alias=prop_name))

    return create_model(f"{tool_name}_args", __base__=_ArgsBase, **fields)


def validate_args(model: Optional[Type[BaseModel]], args: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Validate and coerce `args`. Keys the caller did not send stay absent.
    Raises pydantic.ValidationError on mismatch.
    """
    raw = dict(args or {})
    if model is None:
        return raw
    parsed = model.model_validate(raw)
    return parsed.model_dump(by_alias=True, exclude_unset=True)


def summarize_errors(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "args"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)
