"""Process-wide fused battery cache."""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from batteryfuse.core.fields import clamp_percentage
from batteryfuse.core.identity import identity_key
from batteryfuse.core.model import Device, LookupResult


def merge_battery_levels(target: dict[str, int], source: Mapping[str, int]) -> list[str]:
    """Merge ``source`` into ``target`` keeping the higher value per key.

    Returns the keys that were absent from ``target`` before the merge.
    """
    inserted: list[str] = []
    for key, value in source.items():
        if not key:
            continue
        existing = target.get(key)
        if existing is None:
            target[key] = value
            inserted.append(key)
        elif value > existing:
            target[key] = value
    return inserted


@dataclass(frozen=True)
class CacheSnapshot:
    by_address: dict[str, int]
    by_name: dict[str, int]


class FusionCache:
    """Address and name keyed battery levels shared by every component.

    All writes go through the cache's lock. A refresh cycle builds its maps
    off to the side and hands them over with `swap`, so readers never see a
    half-merged cycle.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_address: dict[str, int] = {}
        self._by_name: dict[str, int] = {}

    def snapshot(self) -> CacheSnapshot:
        with self._lock:
            return CacheSnapshot(by_address=dict(self._by_address), by_name=dict(self._by_name))

    def swap(self, by_address: Mapping[str, int], by_name: Mapping[str, int]) -> None:
        with self._lock:
            self._by_address = {**self._by_address, **by_address}
            self._by_name = {**self._by_name, **by_name}

    def merge_live_results(self, results: Iterable[LookupResult]) -> bool:
        updated = False
        with self._lock:
            for result in results:
                level = clamp_percentage(result.level)
                if result.address_key and level > self._by_address.get(result.address_key, -1):
                    self._by_address[result.address_key] = level
                    updated = True
                if result.name_key and level > self._by_name.get(result.name_key, -1):
                    self._by_name[result.name_key] = level
                    updated = True
        return updated

    def merge_name_levels(self, levels: Mapping[str, int]) -> list[str]:
        with self._lock:
            return merge_battery_levels(
                self._by_name,
                {key: clamp_percentage(value) for key, value in levels.items()},
            )

    def level_for(self, name: str | None, address: str | None = None) -> int | None:
        key = identity_key(name, address)
        with self._lock:
            if key.address and key.address in self._by_address:
                return self._by_address[key.address]
            if key.name and key.name in self._by_name:
                return self._by_name[key.name]
        return None

    def level_for_device(self, device: Device) -> int | None:
        return self.level_for(device.name, device.address)
