"""Stable public API for building tooling on top of batteryfuse.

This module is the supported integration surface for third-party callers
(menu bar apps, status bars, scripts). Avoid importing from internal modules
unless intentionally depending on non-stable internals.
"""

from __future__ import annotations

from collections.abc import Sequence

from batteryfuse.core.cache import CacheSnapshot
from batteryfuse.core.config import Settings
from batteryfuse.core.errors import (
    BatteryFuseError,
    ConfigLoadError,
    ConfigValidationError,
    ConnectionListError,
    FieldMapLoadError,
    FieldMapValidationError,
    LiveReaderError,
    LiveReaderUnavailableError,
    ProbeError,
    ProbeParseError,
    ProbeUnavailableError,
)
from batteryfuse.core.model import BatchReport, Device, DeviceClass, Lookup, LookupResult
from batteryfuse.core.resolver import Presenter
from batteryfuse.core.service import BatteryService

__all__ = [
    "BatteryFuseError",
    "ConfigLoadError",
    "ConfigValidationError",
    "ConnectionListError",
    "FieldMapLoadError",
    "FieldMapValidationError",
    "LiveReaderError",
    "LiveReaderUnavailableError",
    "ProbeError",
    "ProbeParseError",
    "ProbeUnavailableError",
    "BatchReport",
    "CacheSnapshot",
    "Device",
    "DeviceClass",
    "Lookup",
    "LookupResult",
    "Presenter",
    "Settings",
    "Client",
]


class Client:
    """Public client for battery fusion.

    A `Client` wraps the probes, the fusion cache, the live reader and the
    connection resolver behind a stable API. Connection events are fed in by
    the caller; presentations go to ``presenter``.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        presenter: Presenter | None = None,
    ) -> None:
        self._service = BatteryService(settings=settings, presenter=presenter)

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._service.load_warnings

    @property
    def connected_devices(self) -> list[Device]:
        return self._service.connected_devices

    def refresh(self) -> CacheSnapshot:
        return self._service.refresh_now()

    def battery_level(self, name: str, address: str | None = None) -> int | None:
        return self._service.battery_level(name, address)

    def device_connected(self, name: str, address: str | None = None) -> Device:
        return self._service.handle_connected(name, address)

    def device_disconnected(self, name: str, address: str | None = None) -> Device | None:
        return self._service.handle_disconnected(name, address)

    def read_live(self, platform_ids: Sequence[str]) -> BatchReport:
        return self._service.read_live(platform_ids)

    def close(self) -> None:
        self._service.close()
