"""Connected device listing and connect/disconnect event polling."""

from __future__ import annotations

import logging
import re
import subprocess
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from batteryfuse.core.config import WATCH_COMMAND
from batteryfuse.core.errors import ConnectionListError

LOGGER = logging.getLogger(__name__)

_DEVICE_LINE_RE = re.compile(r"^Device\s+([0-9A-F:]{17})\s+(.+)$", re.IGNORECASE)


@dataclass(frozen=True)
class ConnectedDevice:
    address: str
    name: str


def list_connected_devices(cmd: Sequence[str] = WATCH_COMMAND) -> list[ConnectedDevice]:
    try:
        result = subprocess.run(
            list(cmd),
            check=False,
            capture_output=True,
            text=True,
        )
    except OSError as exc:
        raise ConnectionListError(f"{cmd[0]} is not available: {exc}") from exc

    if result.returncode != 0:
        stderr = (result.stderr or "").strip()
        raise ConnectionListError(f"{' '.join(cmd)} -> {stderr or f'exit {result.returncode}'}")

    seen: set[str] = set()
    devices: list[ConnectedDevice] = []
    for line in result.stdout.splitlines():
        match = _DEVICE_LINE_RE.match(line.strip())
        if not match:
            continue
        address, name = match.group(1).upper(), match.group(2).strip()
        if address in seen:
            continue
        seen.add(address)
        devices.append(ConnectedDevice(address=address, name=name))
    return devices


class ConnectionWatcher:
    """Polls the connected device list and reports connects and disconnects."""

    def __init__(
        self,
        on_connected: Callable[[str, str | None], None],
        on_disconnected: Callable[[str, str | None], None],
        *,
        lister: Callable[[], list[ConnectedDevice]] = list_connected_devices,
        interval_s: float = 3.0,
        on_tick: Callable[[], object] | None = None,
    ) -> None:
        self.on_connected = on_connected
        self.on_disconnected = on_disconnected
        self.lister = lister
        self.interval_s = interval_s
        self.on_tick = on_tick
        self._known: dict[str, ConnectedDevice] = {}

    def poll_once(self) -> None:
        try:
            current = {device.address: device for device in self.lister()}
        except ConnectionListError as exc:
            LOGGER.debug("Could not list connected devices: %s", exc)
            return

        for address in sorted(set(self._known) - set(current)):
            device = self._known.pop(address)
            self.on_disconnected(device.name, device.address)
        for address in sorted(set(current) - set(self._known)):
            device = current[address]
            self._known[address] = device
            self.on_connected(device.name, device.address)

    def run(self, stop: threading.Event) -> None:
        while not stop.is_set():
            self.poll_once()
            if self.on_tick is not None:
                self.on_tick()
            stop.wait(self.interval_s)
