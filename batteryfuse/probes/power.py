"""Power utility probe: free-text accessory power source listing.

Each accessory is one line such as::

    -My Earbuds (id=1234567)   95%; discharging; (no estimate) present: true

The host's own battery is listed the same way and is excluded by its
normalized name prefix.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from batteryfuse.core.config import POWER_COMMAND
from batteryfuse.core.fields import clamp_percentage
from batteryfuse.core.identity import normalize_name
from batteryfuse.core.model import ProbeReading, ProbeResult
from batteryfuse.probes.base import CommandProbe

_ACCESSORY_LINE_RE = re.compile(r"^\s*-\s*(.+?)\s*(?:\(.+?\))?\s+(\d+)\s*%", re.MULTILINE)


@dataclass(frozen=True)
class PowerEntry:
    display_name: str
    name_key: str
    level: int


def parse_power_output(output: str, excluded_prefixes: Iterable[str] = ("internalbattery",)) -> list[PowerEntry]:
    excluded = tuple(excluded_prefixes)
    entries: list[PowerEntry] = []
    for match in _ACCESSORY_LINE_RE.finditer(output):
        display_name = match.group(1).strip()
        if not display_name:
            continue
        name_key = normalize_name(display_name)
        if not name_key or name_key.startswith(excluded):
            continue
        entries.append(PowerEntry(display_name=display_name, name_key=name_key, level=int(match.group(2))))
    return entries


class PowerProbe(CommandProbe):
    name = "power"
    rank = 3

    def __init__(
        self,
        command: Sequence[str] = POWER_COMMAND,
        *,
        cooldown_s: float = 5.0,
        excluded_prefixes: Iterable[str] = ("internalbattery",),
    ) -> None:
        super().__init__(command, cooldown_s=cooldown_s)
        self.excluded_prefixes = tuple(excluded_prefixes)

    def parse(self, output: str) -> ProbeResult:
        readings = [
            ProbeReading(
                address_keys=(),
                name_keys=(entry.name_key,),
                percentage=clamp_percentage(entry.level),
                source="power",
                rank=self.rank,
            )
            for entry in parse_power_output(output, self.excluded_prefixes)
        ]
        return ProbeResult.from_readings(readings)
