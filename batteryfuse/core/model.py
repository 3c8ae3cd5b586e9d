"""Core data models used across probes, fusion, resolver, and CLI."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from enum import Enum


class DeviceClass(Enum):
    AIRPODS = "airpods"
    AIRPODS_PRO = "airpodspro"
    AIRPODS_MAX = "airpodsmax"
    BEATS = "beats.headphones"
    HEADPHONES = "headphones"
    SPEAKER = "hifispeaker.fill"
    GENERIC = "bluetooth.circle.fill"

    @property
    def icon(self) -> str:
        return self.value


@dataclass(frozen=True)
class Device:
    name: str
    address: str | None = None
    battery_level: int | None = None
    device_class: DeviceClass = DeviceClass.GENERIC
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def with_battery_level(self, level: int | None) -> Device:
        return replace(self, battery_level=level)


@dataclass(frozen=True)
class IdentityKey:
    address: str
    name: str

    @property
    def is_empty(self) -> bool:
        return not self.address and not self.name


@dataclass(frozen=True)
class ProbeReading:
    address_keys: tuple[str, ...]
    name_keys: tuple[str, ...]
    percentage: int
    source: str
    rank: int


@dataclass(frozen=True)
class ProbeResult:
    """Address and name maps produced by one probe in one cycle."""

    addresses: dict[str, int] = field(default_factory=dict)
    names: dict[str, int] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.addresses and not self.names

    @classmethod
    def from_readings(cls, readings: list[ProbeReading]) -> ProbeResult:
        addresses: dict[str, int] = {}
        names: dict[str, int] = {}
        for reading in readings:
            for key in reading.address_keys:
                if key:
                    addresses[key] = max(addresses.get(key, reading.percentage), reading.percentage)
            for key in reading.name_keys:
                if key:
                    names[key] = max(names.get(key, reading.percentage), reading.percentage)
        return cls(addresses=addresses, names=names)


@dataclass(frozen=True)
class PlatformSnapshot:
    """Mapping of identity keys to wireless platform identifiers."""

    by_address: dict[str, str] = field(default_factory=dict)
    by_name: dict[str, str] = field(default_factory=dict)
    names_by_id: dict[str, str] = field(default_factory=dict)

    @property
    def has_entries(self) -> bool:
        return bool(self.by_address) or bool(self.by_name)


@dataclass(frozen=True)
class Lookup:
    platform_id: str
    address_key: str | None = None
    name_key: str | None = None


@dataclass(frozen=True)
class LookupResult:
    platform_id: str
    level: int
    address_key: str | None = None
    name_key: str | None = None


@dataclass(frozen=True)
class BatchReport:
    """Terminal outcome of every lookup submitted in one live batch."""

    outcomes: dict[str, LookupResult | None]
    results: tuple[LookupResult, ...] = ()
    rejected: bool = False

    @property
    def missing(self) -> list[str]:
        return [platform_id for platform_id, outcome in self.outcomes.items() if outcome is None]


@dataclass(frozen=True)
class FieldRule:
    key: str
    scale: str = "auto"


@dataclass(frozen=True)
class NestedBatteryMap:
    list_key: str
    map_key: str


@dataclass(frozen=True)
class FieldMap:
    id: str
    battery_fields: tuple[FieldRule, ...]
    reduce: str = "max"
    battery_key_contains: str | None = None
    nested_battery_maps: tuple[NestedBatteryMap, ...] = ()
    address_fields: tuple[str, ...] = ()
    name_fields: tuple[str, ...] = ()
