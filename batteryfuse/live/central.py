"""Wireless central abstraction and its bleak implementation."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any, Protocol

from batteryfuse.core.errors import LiveReaderError, LiveReaderUnavailableError

LOGGER = logging.getLogger(__name__)

BATTERY_SERVICE_UUID = "0000180f-0000-1000-8000-00805f9b34fb"
BATTERY_LEVEL_UUID = "00002a19-0000-1000-8000-00805f9b34fb"


class PeripheralSession(Protocol):
    def find_service(self, uuid: str) -> Any | None:
        """Return the discovered service with ``uuid`` or None."""

    def find_characteristic(self, service: Any, uuid: str) -> Any | None:
        """Return the characteristic ``uuid`` of ``service`` or None."""

    async def read(self, characteristic: Any) -> bytes:
        """Read the characteristic value."""


class Central(Protocol):
    def retrieve(self, platform_ids: Iterable[str]) -> dict[str, Any]:
        """Return connectable handles for identifiers the platform already knows."""

    def scan(
        self,
        service_uuid: str,
        on_found: Callable[[str, Any], None],
    ) -> AbstractAsyncContextManager[None]:
        """Report peripherals offering ``service_uuid`` while the context is open."""

    def connect(self, handle: Any, *, timeout_s: float) -> AbstractAsyncContextManager[PeripheralSession]:
        """Connect to ``handle`` and yield a session with discovered services."""


def _import_bleak() -> Any:
    try:
        import bleak  # type: ignore
    except Exception as exc:  # pragma: no cover - import failure path
        raise LiveReaderUnavailableError(
            "Live battery reads require 'bleak'. Install dependency and retry."
        ) from exc
    return bleak


class _BleakSession:
    def __init__(self, client: Any) -> None:
        self._client = client

    def find_service(self, uuid: str) -> Any | None:
        return self._client.services.get_service(uuid)

    def find_characteristic(self, service: Any, uuid: str) -> Any | None:
        return service.get_characteristic(uuid)

    async def read(self, characteristic: Any) -> bytes:
        from bleak.exc import BleakError

        try:
            data = await self._client.read_gatt_char(characteristic)
        except BleakError as exc:
            raise LiveReaderError(f"Battery read failed: {exc}") from exc
        return bytes(data)


class BleakCentral:
    """Central backed by bleak.

    Peripherals seen by earlier scans are remembered so later batches can
    connect to them directly.
    """

    def __init__(self) -> None:
        self._known: dict[str, Any] = {}

    def retrieve(self, platform_ids: Iterable[str]) -> dict[str, Any]:
        return {pid: self._known[pid] for pid in platform_ids if pid in self._known}

    @asynccontextmanager
    async def scan(
        self,
        service_uuid: str,
        on_found: Callable[[str, Any], None],
    ) -> AsyncIterator[None]:
        bleak = _import_bleak()
        from bleak.exc import BleakError

        def _detected(device: Any, _advertisement: Any) -> None:
            platform_id = str(device.address).upper()
            self._known[platform_id] = device
            on_found(platform_id, device)

        scanner = bleak.BleakScanner(detection_callback=_detected, service_uuids=[service_uuid])
        try:
            await scanner.start()
        except (BleakError, OSError) as exc:
            raise LiveReaderUnavailableError(f"BLE scan could not start: {exc}") from exc
        try:
            yield
        finally:
            try:
                await scanner.stop()
            except (BleakError, OSError) as exc:
                LOGGER.debug("BLE scan did not stop cleanly: %s", exc)

    @asynccontextmanager
    async def connect(self, handle: Any, *, timeout_s: float) -> AsyncIterator[PeripheralSession]:
        bleak = _import_bleak()
        from bleak.exc import BleakError

        try:
            async with bleak.BleakClient(handle, timeout=timeout_s) as client:
                if not client.is_connected:
                    raise LiveReaderError(f"BLE connect failed for {handle}")
                yield _BleakSession(client)
        except BleakError as exc:
            raise LiveReaderError(f"BLE session failed for {handle}: {exc}") from exc
