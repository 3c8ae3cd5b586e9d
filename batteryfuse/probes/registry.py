"""Registry probe: cached battery levels from the hardware property tree."""

from __future__ import annotations

import plistlib
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from batteryfuse.core.config import REGISTRY_COMMAND
from batteryfuse.core.errors import ProbeParseError
from batteryfuse.core.fields import address_keys, extract_percentage, name_keys
from batteryfuse.core.model import FieldMap, ProbeReading, ProbeResult
from batteryfuse.probes.base import CommandProbe


def parse_registry_entries(entries: Iterable[Any], field_map: FieldMap, *, rank: int = 0) -> list[ProbeReading]:
    readings: list[ProbeReading] = []
    for entry in entries:
        if not isinstance(entry, Mapping):
            continue
        percent = extract_percentage(entry, field_map)
        if percent is None:
            continue
        readings.append(
            ProbeReading(
                address_keys=address_keys(entry, field_map.address_fields),
                name_keys=name_keys(entry, field_map.name_fields),
                percentage=percent,
                source="registry",
                rank=rank,
            )
        )
    return readings


class RegistryProbe(CommandProbe):
    name = "registry"
    rank = 0

    def __init__(self, field_map: FieldMap, command: Sequence[str] = REGISTRY_COMMAND) -> None:
        super().__init__(command, cooldown_s=0.0)
        self.field_map = field_map

    def parse(self, output: str) -> ProbeResult:
        try:
            loaded = plistlib.loads(output.encode("utf-8"))
        except (plistlib.InvalidFileException, ValueError) as exc:
            raise ProbeParseError(f"Registry output is not a property list: {exc}") from exc

        entries = loaded if isinstance(loaded, list) else [loaded]
        return ProbeResult.from_readings(parse_registry_entries(entries, self.field_map, rank=self.rank))
