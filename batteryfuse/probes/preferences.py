"""Preferences probe: the persisted pairing-preferences store.

The store is a property list with two relevant records: ``DeviceCache``
(address -> accessory payload, often carrying battery fields) and
``CoreBluetoothCache`` (platform identifier -> payload), the latter used to
address live protocol reads.
"""

from __future__ import annotations

import logging
import plistlib
import uuid
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from batteryfuse.core.config import PREFERENCES_PATH
from batteryfuse.core.errors import ProbeError, ProbeParseError, ProbeUnavailableError
from batteryfuse.core.fields import address_keys, extract_percentage, first_name_key, name_keys
from batteryfuse.core.identity import normalize_address
from batteryfuse.core.model import FieldMap, PlatformSnapshot, ProbeReading, ProbeResult

LOGGER = logging.getLogger(__name__)


def parse_device_cache(device_cache: Mapping[str, Any], field_map: FieldMap, *, rank: int = 1) -> list[ProbeReading]:
    readings: list[ProbeReading] = []
    for record_key, payload in device_cache.items():
        if not isinstance(payload, Mapping):
            continue
        percent = extract_percentage(payload, field_map)
        if percent is None:
            continue

        keys = list(address_keys(payload, field_map.address_fields))
        record_address = normalize_address(str(record_key))
        if record_address and record_address not in keys:
            keys.insert(0, record_address)

        name_key = first_name_key(payload, field_map.name_fields)
        readings.append(
            ProbeReading(
                address_keys=tuple(keys),
                name_keys=(name_key,) if name_key else (),
                percentage=percent,
                source="preferences",
                rank=rank,
            )
        )
    return readings


def parse_core_bluetooth_cache(core_cache: Mapping[str, Any], field_map: FieldMap) -> PlatformSnapshot:
    by_address: dict[str, str] = {}
    by_name: dict[str, str] = {}
    names_by_id: dict[str, str] = {}

    for raw_id, payload in core_cache.items():
        if not isinstance(payload, Mapping):
            continue
        try:
            platform_id = str(uuid.UUID(str(raw_id))).upper()
        except ValueError:
            continue

        for key in address_keys(payload, field_map.address_fields):
            by_address[key] = platform_id
        for key in name_keys(payload, field_map.name_fields):
            by_name[key] = platform_id
            names_by_id[platform_id] = key

    return PlatformSnapshot(by_address=by_address, by_name=by_name, names_by_id=names_by_id)


class PreferencesProbe:
    name = "preferences"
    rank = 1

    def __init__(
        self,
        field_map: FieldMap,
        platform_field_map: FieldMap,
        path: str | Path = PREFERENCES_PATH,
    ) -> None:
        self.field_map = field_map
        self.platform_field_map = platform_field_map
        self.path = Path(path)

    def _load(self) -> dict[str, Any]:
        try:
            with self.path.open("rb") as handle:
                loaded = plistlib.load(handle)
        except FileNotFoundError as exc:
            raise ProbeUnavailableError(f"Preferences store {self.path} does not exist") from exc
        except OSError as exc:
            raise ProbeUnavailableError(f"Could not read preferences store {self.path}: {exc}") from exc
        except (plistlib.InvalidFileException, ValueError) as exc:
            raise ProbeParseError(f"Preferences store {self.path} is not a property list: {exc}") from exc

        if not isinstance(loaded, dict):
            raise ProbeParseError(f"Preferences store {self.path} must contain a dictionary at root")
        return loaded

    def _record(self, record: str) -> Mapping[str, Any]:
        try:
            loaded = self._load()
        except ProbeError as exc:
            LOGGER.debug("preferences probe produced no readings: %s", exc)
            return {}
        value = loaded.get(record)
        return value if isinstance(value, Mapping) else {}

    def collect(self) -> ProbeResult:
        readings = parse_device_cache(self._record("DeviceCache"), self.field_map, rank=self.rank)
        return ProbeResult.from_readings(readings)

    def platform_snapshot(self) -> PlatformSnapshot:
        return parse_core_bluetooth_cache(self._record("CoreBluetoothCache"), self.platform_field_map)
