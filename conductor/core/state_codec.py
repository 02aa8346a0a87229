"""Versioned encoding of orchestrator state.

Documents written to disk carry a ``schema_version`` and encode datetimes as
tagged objects (``{"__type__": "datetime", "value": "<iso>"}``) so they come
back as datetimes rather than strings. Older documents are migrated forward
on decode.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .exceptions import StateStoreError
from .models import OrchestratorState

SCHEMA_VERSION = 1

TYPE_TAG = "__type__"
DATETIME_TAG = "datetime"

ModelT = TypeVar("ModelT", bound=BaseModel)


def encode_value(value: Any) -> Any:
    """Convert a value into a JSON-compatible structure with tagged datetimes."""
    if isinstance(value, BaseModel):
        return encode_value(value.model_dump(mode="python"))
    if isinstance(value, datetime):
        return {TYPE_TAG: DATETIME_TAG, "value": value.isoformat()}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {_encode_key(k): encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [encode_value(v) for v in value]
    return value


def decode_value(value: Any) -> Any:
    """Reverse :func:`encode_value`, restoring tagged datetimes."""
    if isinstance(value, dict):
        if value.get(TYPE_TAG) == DATETIME_TAG:
            return datetime.fromisoformat(value["value"])
        return {k: decode_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [decode_value(v) for v in value]
    return value


def _encode_key(key: Any) -> str:
    if isinstance(key, Enum):
        return str(key.value)
    return str(key)


def encode_model(model: BaseModel) -> Dict[str, Any]:
    """Encode a single model (lessons, checkpoints) without a version header."""
    return encode_value(model)


def decode_model(model_cls: Type[ModelT], data: Any) -> ModelT:
    """Decode a single model produced by :func:`encode_model`."""
    try:
        return model_cls.model_validate(decode_value(data))
    except ValidationError as e:
        raise StateStoreError(f"Invalid {model_cls.__name__} document: {e}") from e


def encode_state(state: OrchestratorState) -> Dict[str, Any]:
    """Encode the aggregate state document with its schema version."""
    return {"schema_version": SCHEMA_VERSION, "state": encode_value(state)}


def decode_state(document: Dict[str, Any]) -> OrchestratorState:
    """
    Decode a state document, migrating it to the current schema if needed.

    Args:
        document: Parsed JSON document

    Returns:
        Decoded orchestrator state

    Raises:
        StateStoreError: If the document is from a newer schema or invalid
    """
    if not isinstance(document, dict):
        raise StateStoreError("State document must be a JSON object")

    version = document.get("schema_version", 0)
    if not isinstance(version, int):
        raise StateStoreError(f"Invalid schema_version: {version!r}")
    if version > SCHEMA_VERSION:
        raise StateStoreError(
            f"State schema version {version} is newer than supported ({SCHEMA_VERSION})"
        )

    while version < SCHEMA_VERSION:
        document = MIGRATIONS[version](document)
        version = document["schema_version"]

    try:
        return OrchestratorState.model_validate(decode_value(document["state"]))
    except (KeyError, ValidationError) as e:
        raise StateStoreError(f"Invalid state document: {e}") from e


# ============================================================================
# Migrations
# ============================================================================

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")

# Legacy field names that changed meaning rather than just casing
_LEGACY_RENAMES = {
    "active_agents": "active_roles",
    "auto_advance_enabled": "auto_advance",
    "agent_type": "role",
    "required_agents": "required_roles",
}


def _snake_keys(value: Any) -> Any:
    if isinstance(value, dict):
        if value.get("__type") == "Date":
            return {TYPE_TAG: DATETIME_TAG, "value": value["value"]}
        converted = {}
        for key, item in value.items():
            new_key = _CAMEL_BOUNDARY.sub(r"_\1", key).lower() if isinstance(key, str) else key
            converted[_LEGACY_RENAMES.get(new_key, new_key)] = _snake_keys(item)
        return converted
    if isinstance(value, list):
        return [_snake_keys(v) for v in value]
    return value


def _migrate_v0(document: Dict[str, Any]) -> Dict[str, Any]:
    """Unversioned documents: bare camelCase state with ``__type: Date`` tags."""
    return {"schema_version": 1, "state": _snake_keys(document)}


MIGRATIONS: Dict[int, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    0: _migrate_v0,
}
