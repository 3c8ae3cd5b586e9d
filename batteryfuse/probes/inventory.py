"""Inventory utility probe: structured Bluetooth report of connected devices."""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any

from batteryfuse.core.config import INVENTORY_COMMAND
from batteryfuse.core.errors import ProbeParseError
from batteryfuse.core.fields import address_keys, extract_percentage
from batteryfuse.core.identity import normalize_name
from batteryfuse.core.model import FieldMap, ProbeReading, ProbeResult
from batteryfuse.probes.base import CommandProbe

_REPORT_KEY = "SPBluetoothDataType"
_CONNECTED_KEY = "device_connected"


def parse_inventory_report(report: Mapping[str, Any], field_map: FieldMap, *, rank: int = 2) -> list[ProbeReading]:
    entries = report.get(_REPORT_KEY)
    if not isinstance(entries, list) or not entries or not isinstance(entries[0], Mapping):
        raise ProbeParseError(f"Inventory report has no '{_REPORT_KEY}' section")

    connected = entries[0].get(_CONNECTED_KEY)
    if not isinstance(connected, list):
        return []

    readings: list[ProbeReading] = []
    for group in connected:
        if not isinstance(group, Mapping):
            continue
        for raw_name, payload in group.items():
            if not isinstance(payload, Mapping):
                continue
            percent = extract_percentage(payload, field_map)
            if percent is None:
                continue
            name_key = normalize_name(str(raw_name))
            readings.append(
                ProbeReading(
                    address_keys=address_keys(payload, field_map.address_fields),
                    name_keys=(name_key,) if name_key else (),
                    percentage=percent,
                    source="inventory",
                    rank=rank,
                )
            )
    return readings


class InventoryProbe(CommandProbe):
    name = "inventory"
    rank = 2

    def __init__(
        self,
        field_map: FieldMap,
        command: Sequence[str] = INVENTORY_COMMAND,
        *,
        cooldown_s: float = 5.0,
    ) -> None:
        super().__init__(command, cooldown_s=cooldown_s)
        self.field_map = field_map

    def parse(self, output: str) -> ProbeResult:
        try:
            report = json.loads(output)
        except json.JSONDecodeError as exc:
            raise ProbeParseError(f"Inventory output is not JSON: {exc}") from exc
        if not isinstance(report, dict):
            raise ProbeParseError("Inventory output must be a JSON object")
        return ProbeResult.from_readings(parse_inventory_report(report, self.field_map, rank=self.rank))
