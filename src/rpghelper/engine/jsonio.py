from __future__ import annotations
import json
from typing import Any, Iterable, List, Tuple, Union
from pydantic import BaseModel, TypeAdapter, ValidationError
from .errors import JsonErrorKind, JsonParseError

_ROOT_KIND_ERRORS = {"model_type", "model_attributes_type", "list_type", "dict_type", "string_type"}

def _reject_duplicates(pairs: List[Tuple[str, Any]]) -> dict:
    out: dict = {}
    for k, v in pairs:
        if k in out:
            raise JsonParseError(JsonErrorKind.DUPLICATE_KEY, key=k, value=v)
        out[k] = v
    return out

def loads(text: Union[str, bytes]) -> Any:
    """json.loads that refuses duplicate object keys instead of silently keeping the last one."""
    try:
        return json.loads(text, object_pairs_hook=_reject_duplicates)
    except json.JSONDecodeError as e:
        raise JsonParseError(JsonErrorKind.INVALID_JSON, detail=str(e)) from e
    except RecursionError as e:
        raise JsonParseError(JsonErrorKind.INVALID_JSON, detail="nested too deeply") from e

def dumps(value: Any, indent: int | None = 2) -> str:
    return json.dumps(value, indent=indent)

def error_from_validation(e: ValidationError, value: Any) -> JsonParseError:
    errs = e.errors()
    if not errs:
        return JsonParseError(JsonErrorKind.INVALID_VALUE_FOUND, value=value, detail=str(e))
    first = errs[0]
    loc = first.get("loc", ())
    key = ".".join(str(p) for p in loc) or None
    etype = first.get("type", "")
    if etype == "missing":
        return JsonParseError(JsonErrorKind.EXPECTED_VALUE_NOT_FOUND, key=key, detail=first.get("msg", ""))
    if not loc and etype in _ROOT_KIND_ERRORS:
        return JsonParseError(JsonErrorKind.INVALID_ROOT_VALUE, value=value, detail=first.get("msg", ""))
    return JsonParseError(JsonErrorKind.INVALID_VALUE_FOUND, key=key, value=first.get("input"), detail=first.get("msg", ""))

def validate(schema: Union[TypeAdapter, type[BaseModel]], value: Any) -> Any:
    try:
        if isinstance(schema, TypeAdapter):
            return schema.validate_python(value)
        return schema.model_validate(value)
    except ValidationError as e:
        raise error_from_validation(e, value) from e

def ensure_unique(keys: Iterable[str]) -> None:
    seen = set()
    for k in keys:
        if k in seen:
            raise JsonParseError(JsonErrorKind.DUPLICATE_KEY, key=k)
        seen.add(k)
