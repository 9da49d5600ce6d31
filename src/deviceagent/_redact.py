"""Redaction for DEBUG logs.

Three kinds of payload reach the agent's debug output: status reports and
command messages, platform snapshot records and settings records. Any key
naming a credential is masked, flow and module bodies are reduced to a
count, and the values of a settings ``env`` block are masked because
deployments routinely pass secrets through it.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

_MASK = "<redacted>"
_MAX_DEPTH = 20

# Substrings; matches ``brokerPassword``, ``credentialSecret``, ``x-auth-token``...
_SECRET_MARKERS: tuple[str, ...] = ("password", "token", "secret", "credential", "authorization", "cookie")

_BULKY_KEYS: frozenset[str] = frozenset({"flows", "modules"})


def is_secret_key(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in _SECRET_MARKERS)


def _redact_entry(key: str, value: Any, max_string: int, depth: int) -> Any:
    if is_secret_key(key):
        return _MASK
    lowered = key.lower()
    if lowered in _BULKY_KEYS and isinstance(value, (Mapping, list)):
        return f"<{len(value)} items>"
    if lowered == "env" and isinstance(value, Mapping):
        return {str(name): _MASK for name in value}
    return redact_for_log(value, max_string=max_string, _depth=depth + 1)


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a copy of *value* that is safe to write to debug logs."""
    if _depth > _MAX_DEPTH:
        return "<max-depth>"
    if isinstance(value, Mapping):
        return {str(k): _redact_entry(str(k), v, max_string, _depth) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact_for_log(item, max_string=max_string, _depth=_depth + 1) for item in value]
    if isinstance(value, str):
        return value if len(value) <= max_string else f"{value[:max_string]}…<truncated>"
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"
    if value is None or isinstance(value, (int, float, bool)):
        return value
    return repr(value)
