from __future__ import annotations

import json
import re
from typing import Any


def normalize_phrase(value: str | None) -> str:
    """Lowercase and collapse runs of whitespace."""
    return " ".join((value or "").strip().lower().split())


def slug(value: str | None) -> str:
    return normalize_phrase(value).replace(" ", "_")


def normalize_material_name(value: str | None) -> str:
    return re.sub(r"[\s_]", "", (value or "").strip().lower())


def field_key(value: str) -> str:
    """Key used to match snake_case and camelCase content fields."""
    return value.replace("_", "").lower()


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def parse_json_dict(text: str | bytes | None) -> dict[str, Any]:
    if not text:
        return {}
    try:
        data = json.loads(text)
    except (TypeError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def dump_json(data: dict[str, Any], *, indent: int | None = None) -> str:
    if indent is None:
        return json.dumps(data, ensure_ascii=True, separators=(",", ":"), sort_keys=True)
    return json.dumps(data, ensure_ascii=True, indent=indent, sort_keys=True)


def format_sterling(pennies: int) -> str:
    pounds, rem = divmod(pennies, 240)
    shillings, pence = divmod(rem, 12)
    if pounds > 0:
        return f"£{pounds} {shillings}s {pence}d ({pennies}d)"
    return f"{shillings}s {pence}d ({pennies}d)"
