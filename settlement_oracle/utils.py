"""Shared utilities for the settlement oracle."""

import json
import re
from typing import Any

_PATH_TOKEN = re.compile(r"""\.?([^.\[\]]+)|\[\s*(?:'([^']*)'|"([^"]*)"|(-?\d+))\s*\]""")


def _first_balanced_object(text: str) -> str | None:
    """Return the first balanced {...} span in text, ignoring braces inside strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        start = text.find("{", start + 1)
    return None


def parse_llm_json(raw: str) -> dict:
    """Parse JSON from LLM responses, handling markdown fences and extra text.

    Strips markdown code fences (```json...``` or ```...```), extracts the
    first balanced JSON object, then parses it.

    Raises ValueError with the raw text if parsing fails.
    """
    text = re.sub(r"```(?:json)?", "", raw or "").strip()

    candidate = _first_balanced_object(text)
    if candidate is None:
        raise ValueError(f"No JSON object found in LLM response: {raw}")

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise ValueError(f"Failed to parse JSON from LLM response: {raw}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object in LLM response: {raw}")
    return data


def split_path(path: str) -> list[str | int]:
    """Split a `$.a.b[0]['c']` style path into keys and list indexes.

    Only dot and bracket access are supported; filters, wildcards and slices
    raise ValueError.
    """
    text = path.strip()
    if text.startswith("$"):
        text = text[1:]

    parts: list[str | int] = []
    pos = 0
    while pos < len(text):
        match = _PATH_TOKEN.match(text, pos)
        if match is None or match.end() == pos:
            raise ValueError(f"Unsupported extraction path: {path!r}")
        name, single, double, index = match.groups()
        if index is not None:
            parts.append(int(index))
        else:
            key = next(p for p in (name, single, double) if p is not None)
            if key in ("*", ".."):
                raise ValueError(f"Unsupported extraction path: {path!r}")
            parts.append(key)
        pos = match.end()
    return parts


def extract_value(data: Any, path: str) -> Any:
    """Walk `data` along `path`, returning None when a segment is missing."""
    current = data
    for part in split_path(path):
        if current is None:
            return None
        if isinstance(current, list):
            if isinstance(part, str):
                if not part.lstrip("-").isdigit():
                    return None
                part = int(part)
            try:
                current = current[part]
            except IndexError:
                return None
        elif isinstance(current, dict):
            current = current.get(str(part))
        else:
            return None
    return current


def dump_trace(obj: Any) -> dict[str, Any]:
    """Best-effort JSON-safe dump of an SDK response object for the audit trail."""
    dump = getattr(obj, "model_dump", None)
    if dump is None:
        return {}
    try:
        data = dump(mode="json", exclude_none=True)
    except Exception:
        return {}
    return data if isinstance(data, dict) else {}
