"""Row and frame extraction for xctrace XML exports."""

from __future__ import annotations

import json
import re
import xml.etree.ElementTree as ET
from typing import Any


NANOSECOND_THRESHOLD = 1_000_000

# Elements that always become lists, even when a single one is present.
LIST_ELEMENTS = frozenset([
    "row",
    "sample",
    "frame",
    "table",
    "run",
    "schema",
    "column",
    "node",
    "backtrace",
])

ROW_PATHS = [
    "trace-query-result.row",
    "table.row",
    "run.data.table.row",
    "run.tracks.track.details.detail.row",
]

_HEX_ADDRESS = re.compile(r"^0x[0-9a-f]+$", re.IGNORECASE)
_PLACEHOLDER_NAMES = {"unknown", "<deduplicated_symbol>"}


class TraceExportError(ValueError):
    """Raised when an export document is not parseable XML."""


def is_row(value: Any) -> bool:
    return isinstance(value, dict)


def _element_to_value(elem: ET.Element, id_cache: dict[str, ET.Element], converted: dict[str, Any]) -> Any:
    ref = elem.get("ref")
    if ref is not None and ref in id_cache:
        elem = id_cache[ref]

    elem_id = elem.get("id")
    if elem_id is not None and elem_id in converted:
        return converted[elem_id]

    node: dict[str, Any] = {
        f"@{key}": value
        for key, value in elem.attrib.items()
        if key not in ("id", "ref")
    }
    for child in elem:
        value = _element_to_value(child, id_cache, converted)
        tag = child.tag
        if tag in LIST_ELEMENTS:
            node.setdefault(tag, []).append(value)
        elif tag in node:
            existing = node[tag]
            if not isinstance(existing, list):
                node[tag] = [existing]
            node[tag].append(value)
        else:
            node[tag] = value

    text = (elem.text or "").strip()
    if text:
        if node:
            node["#text"] = text
            result: Any = node
        else:
            result = text
    else:
        result = node if node else ""

    if elem_id is not None:
        converted[elem_id] = result
    return result


def parse_export(xml_text: str) -> dict:
    """
    Parse xctrace export XML into nested dicts.

    Elements referenced through ``ref`` are replaced by the element that
    carries the matching ``id``, so deduplicated frames and binaries read the
    same as their first occurrence.
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as exc:
        raise TraceExportError(f"Trace export is not valid XML: {exc}") from exc

    id_cache = {elem.get("id"): elem for elem in root.iter() if elem.get("id") is not None}
    value = _element_to_value(root, id_cache, {})
    if root.tag in LIST_ELEMENTS:
        value = [value]
    return {root.tag: value}


def get_path(data: Any, path: str) -> Any:
    """Walk a dot-separated path; lists are entered through their first item."""
    current = data
    for part in path.split("."):
        if isinstance(current, list):
            current = current[0] if current else None
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def extract_rows(document: dict) -> list[dict]:
    """
    Extract rows from a parsed export, trying each layout xctrace emits:
    trace-query-result > node > row first, then the older fallbacks.
    """
    nodes = get_path(document, "trace-query-result.node")
    if isinstance(nodes, list):
        for node in nodes:
            if is_row(node) and node.get("row"):
                return [row for row in node["row"] if is_row(row)]

    for path in ROW_PATHS:
        rows = get_path(document, path)
        if isinstance(rows, list) and rows:
            return [row for row in rows if is_row(row)]
    return []


def load_rows(xml_text: str) -> list[dict]:
    return extract_rows(parse_export(xml_text))


def extract_str(row: dict, key: str) -> str | None:
    value = row.get(key, row.get(f"@{key}"))
    if isinstance(value, str):
        return value
    if is_row(value) and "#text" in value:
        return str(value["#text"])
    return None


def extract_fmt(row: dict, key: str) -> str | None:
    value = row.get(key)
    if is_row(value) and isinstance(value.get("@fmt"), str):
        return value["@fmt"]
    return None


def _to_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_fmt_duration(fmt: str) -> float | None:
    """Parse '5.00 ms', '1.5 s', '500 µs' or '20 ns' into milliseconds."""
    match = re.search(r"([\d.]+)\s*ms\b", fmt)
    if match:
        return _to_float(match.group(1))
    match = re.search(r"([\d.]+)\s*(?:us|µs|μs)\b", fmt)
    if match:
        value = _to_float(match.group(1))
        return value / 1000 if value is not None else None
    match = re.search(r"([\d.]+)\s*ns\b", fmt)
    if match:
        value = _to_float(match.group(1))
        return value / 1_000_000 if value is not None else None
    match = re.search(r"([\d.]+)\s*s\b", fmt)
    if match:
        value = _to_float(match.group(1))
        return value * 1000 if value is not None else None
    return None


def _raw_to_ms(value: float) -> float:
    # At or above one million the raw figure is nanoseconds.
    return value / NANOSECOND_THRESHOLD if value >= NANOSECOND_THRESHOLD else value


def extract_duration_ms(row: dict, keys: list[str]) -> float | None:
    """
    Read a duration in milliseconds from the first usable key.

    A formatted ``@fmt`` string wins over the raw value; raw values go
    through the nanosecond heuristic.
    """
    for key in keys:
        value = row.get(key, row.get(f"@{key}"))
        if value is None:
            continue
        if is_row(value):
            fmt = value.get("@fmt")
            if isinstance(fmt, str):
                parsed = parse_fmt_duration(fmt)
                if parsed:
                    return parsed
            raw = _to_float(value.get("#text"))
            if raw is not None:
                return _raw_to_ms(raw)
            continue
        raw = _to_float(value)
        if raw is not None:
            return _raw_to_ms(raw)
    return None


def extract_weight(row: dict) -> float | None:
    return extract_duration_ms(row, ["weight"])


def _first(value: Any) -> Any:
    if isinstance(value, list):
        return value[0] if value else None
    return value


def extract_frames(row: dict) -> list[tuple[str, str]]:
    """Return ``(name, module)`` pairs for the row's backtrace, leaf first."""
    backtrace = _first(row.get("backtrace"))
    if not is_row(backtrace):
        return []
    frames = backtrace.get("frame")
    if not frames:
        return []
    if not isinstance(frames, list):
        frames = [frames]

    result = []
    for frame in frames:
        if not is_row(frame):
            continue
        binary = _first(frame.get("binary"))
        module = binary.get("@name") if is_row(binary) else None
        result.append((frame.get("@name") or "unknown", module or "unknown"))
    return result


def is_unsymbolicated(name: str) -> bool:
    return name in _PLACEHOLDER_NAMES or bool(_HEX_ADDRESS.match(name))


def row_text(row: Any) -> str:
    """Lower-cased serialization used for substring search."""
    return json.dumps(row, ensure_ascii=False, default=str).lower()


def format_row(row: dict) -> dict:
    """Flatten a row for display: drop attributes, prefer formatted values."""
    fields: dict[str, Any] = {}
    for key, value in row.items():
        if key.startswith("@"):
            continue
        if is_row(value):
            fields[key] = value.get("@fmt") or value.get("#text") or value
        elif isinstance(value, list):
            fields[key] = [
                (item.get("@name") or item.get("@fmt") or item.get("#text")) if is_row(item) else item
                for item in value
            ]
        else:
            fields[key] = value
    return fields
