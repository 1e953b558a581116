import json
import os
from typing import Any, Optional


def _truthy(value: Optional[str]) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def debug_enabled() -> bool:
    return _truthy(os.getenv("HABITCOACH_DEBUG"))


def debug_log(message: str, payload: Optional[dict[str, Any]] = None, tag: str = "debug") -> None:
    """Print a tagged line when HABITCOACH_DEBUG is on; payload is dumped as JSON."""
    if not debug_enabled():
        return
    if payload is None:
        print(f"[{tag}] {message}")
        return
    try:
        payload_str = json.dumps(payload, ensure_ascii=False, default=str, sort_keys=True)
    except (TypeError, ValueError):
        payload_str = str(payload)
    print(f"[{tag}] {message} :: {payload_str}")
