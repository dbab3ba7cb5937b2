"""
Response Decoding

Each remote endpoint wraps its payload under one named key
(`{"success": true, "meals": [...]}`). These helpers pull that key out and
validate it into a model.

A successful response with the wrong shape is a protocol error, not a
connectivity problem: it raises `ResponseShapeError` and is never retried
against the local store.
"""

from typing import Any, Optional, TypeVar

from pydantic import BaseModel, TypeAdapter, ValidationError


M = TypeVar("M", bound=BaseModel)


class ResponseShapeError(Exception):
    """The remote answered successfully with an unexpected shape."""
    pass


def _field(data: Optional[dict[str, Any]], key: str) -> Any:
    if not isinstance(data, dict):
        raise ResponseShapeError("Response body is not an object")
    if key not in data:
        raise ResponseShapeError(f"Response is missing '{key}'")
    return data[key]


def decode_one(data: Optional[dict[str, Any]], key: str, model: type[M]) -> M:
    payload = _field(data, key)
    if not isinstance(payload, dict):
        raise ResponseShapeError(f"'{key}' is not an object")
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise ResponseShapeError(f"Invalid '{key}': {e}")


def decode_optional(data: Optional[dict[str, Any]], key: str, model: type[M]) -> Optional[M]:
    """Like `decode_one`, but a missing or null key means "no such record"."""
    if isinstance(data, dict) and data.get(key) is None:
        return None
    return decode_one(data, key, model)


def decode_list(data: Optional[dict[str, Any]], key: str, model: type[M]) -> list[M]:
    payload = _field(data, key)
    if not isinstance(payload, list):
        raise ResponseShapeError(f"'{key}' is not a list")
    try:
        return [model.model_validate(item) for item in payload]
    except ValidationError as e:
        raise ResponseShapeError(f"Invalid item in '{key}': {e}")


def decode_value(data: Optional[dict[str, Any]], key: str, type_: Any) -> Any:
    """Validate a scalar field (counts, codes, flags)."""
    try:
        return TypeAdapter(type_).validate_python(_field(data, key))
    except ValidationError as e:
        raise ResponseShapeError(f"Invalid '{key}': {e}")


def decode_ack(data: Optional[dict[str, Any]]) -> bool:
    """Delete/mark endpoints only acknowledge; reaching here means success."""
    if not isinstance(data, dict):
        raise ResponseShapeError("Response body is not an object")
    return True
