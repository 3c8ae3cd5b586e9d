"""Battery percentage extraction from loosely-typed platform payloads.

Platform payloads (property lists, JSON reports) carry battery readings under
many field names and in several scales. Extraction is driven by a `FieldMap`:
an ordered list of `FieldRule` entries evaluated in priority order, reduced
either to the first success or to the maximum across all matching fields.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from typing import Any

from batteryfuse.core.identity import normalize_address, normalize_name
from batteryfuse.core.model import FieldMap, FieldRule

SCALES = ("auto", "percent", "fraction")


def clamp_percentage(value: int) -> int:
    return min(max(value, 0), 100)


def string_value(value: Any) -> str | None:
    if isinstance(value, str):
        return value if value.strip() else None
    if isinstance(value, (bytes, bytearray)):
        try:
            decoded = bytes(value).decode("utf-8")
        except UnicodeDecodeError:
            return None
        return decoded if decoded.strip() else None
    return None


def _as_number(value: Any) -> float | int | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return value
    text = string_value(value)
    if text is None:
        return None
    try:
        number = float(text.strip().replace("%", "").strip())
    except ValueError:
        return None
    return number


def convert_to_percentage(value: Any, scale: str = "auto") -> int | None:
    """Normalize a raw reading to an integer percentage in 0..100.

    With ``scale="auto"`` an integer ``1`` and any float ``<= 1.0`` are read
    as fractions of a full charge; everything else is already a percentage.
    """
    number = _as_number(value)
    if number is None:
        return None
    if isinstance(number, float) and not math.isfinite(number):
        return None

    if scale == "fraction":
        percent = int(number * 100)
    elif scale == "percent":
        percent = int(number)
    elif isinstance(number, int):
        percent = 100 if number == 1 else number
    elif number <= 1.0:
        percent = int(number * 100)
    else:
        percent = int(number)
    return clamp_percentage(percent)


def _converted(payload: Mapping[str, Any], rules: Iterable[FieldRule]) -> list[int]:
    values: list[int] = []
    for rule in rules:
        if rule.key not in payload:
            continue
        converted = convert_to_percentage(payload[rule.key], rule.scale)
        if converted is not None:
            values.append(converted)
    return values


def first_percentage(payload: Mapping[str, Any], rules: Iterable[FieldRule]) -> int | None:
    for rule in rules:
        if rule.key not in payload:
            continue
        converted = convert_to_percentage(payload[rule.key], rule.scale)
        if converted is not None:
            return converted
    return None


def max_percentage(payload: Mapping[str, Any], rules: Iterable[FieldRule]) -> int | None:
    values = _converted(payload, rules)
    return max(values) if values else None


def _nested_percentages(payload: Mapping[str, Any], field_map: FieldMap) -> list[int]:
    values: list[int] = []
    for nested in field_map.nested_battery_maps:
        entries = payload.get(nested.list_key)
        if not isinstance(entries, list):
            continue
        for entry in entries:
            if not isinstance(entry, Mapping):
                continue
            readings = entry.get(nested.map_key)
            if not isinstance(readings, Mapping):
                continue
            for raw in readings.values():
                converted = convert_to_percentage(raw)
                if converted is not None:
                    values.append(converted)
    return values


def _contains_percentages(payload: Mapping[str, Any], token: str) -> list[int]:
    values: list[int] = []
    lowered = token.lower()
    for key, raw in payload.items():
        if lowered in str(key).lower():
            converted = convert_to_percentage(raw)
            if converted is not None:
                values.append(converted)
    return values


def extract_percentage(payload: Mapping[str, Any], field_map: FieldMap) -> int | None:
    if field_map.reduce == "first":
        found = first_percentage(payload, field_map.battery_fields)
        if found is not None:
            return found
    else:
        found = max_percentage(payload, field_map.battery_fields)
        if found is not None:
            return found

    nested = _nested_percentages(payload, field_map)
    if nested:
        return max(nested)

    if field_map.battery_key_contains:
        loose = _contains_percentages(payload, field_map.battery_key_contains)
        if loose:
            return max(loose)
    return None


def address_keys(payload: Mapping[str, Any], fields: Iterable[str]) -> tuple[str, ...]:
    keys: list[str] = []
    for field_name in fields:
        text = string_value(payload.get(field_name))
        if text is None:
            continue
        normalized = normalize_address(text)
        if normalized and normalized not in keys:
            keys.append(normalized)
    return tuple(keys)


def name_keys(payload: Mapping[str, Any], fields: Iterable[str]) -> tuple[str, ...]:
    keys: list[str] = []
    for field_name in fields:
        text = string_value(payload.get(field_name))
        if text is None:
            continue
        normalized = normalize_name(text)
        if normalized and normalized not in keys:
            keys.append(normalized)
    return tuple(keys)


def first_name_key(payload: Mapping[str, Any], fields: Iterable[str]) -> str:
    for field_name in fields:
        value = payload.get(field_name)
        if isinstance(value, str):
            normalized = normalize_name(value)
            if normalized:
                return normalized
    return ""
