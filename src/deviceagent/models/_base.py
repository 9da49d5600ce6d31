"""Base model for deviceagent records.

Every record inherits from :class:`AgentBaseModel` which provides:

* ``alias_generator=to_camel`` so camelCase platform keys map
  automatically to snake_case fields.
* ``populate_by_name`` so records can be built from Python code with
  field names.
* ``frozen=True``; records are replaced, never mutated.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def fold_into_payload(values: Any, key: str) -> Any:
    """Move every entry except *key* into a ``payload`` dict.

    Platform records arrive flat (``{"id": ..., "name": ..., "flows": ...}``)
    while the persisted shape nests them (``{"id": ..., "payload": {...}}``).
    Values that already carry a ``payload`` are returned untouched.
    """
    if not isinstance(values, dict) or "payload" in values:
        return values
    payload = {k: v for k, v in values.items() if k != key}
    return {key: values.get(key), "payload": payload}


class AgentBaseModel(BaseModel):
    """Base for deviceagent records."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )
