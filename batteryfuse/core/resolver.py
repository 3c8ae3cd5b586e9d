"""Bounded wait for a battery level after a device connects."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Protocol

from batteryfuse.core.cache import FusionCache
from batteryfuse.core.identity import missing_battery_key
from batteryfuse.core.model import Device

LOGGER = logging.getLogger(__name__)


def _wait_key(device: Device) -> str:
    return missing_battery_key(device.name, device.address)


class Presenter(Protocol):
    def present(self, device: Device, battery_level: int | None) -> None:
        """Show a connection notification for ``device``."""


class LogPresenter:
    def present(self, device: Device, battery_level: int | None) -> None:
        battery = f"{battery_level}%" if battery_level is not None else "unknown"
        LOGGER.info("Connected %s [%s] battery=%s", device.name, device.device_class.icon, battery)


class ConnectionResolver:
    """Presents a connected device once its level is cached or the wait expires.

    At most one wait runs per device identity (normalized name and
    address); starting a new one cancels the old.
    ``on_miss`` is called once, before polling begins, when the cache has no
    level for the device.
    """

    def __init__(
        self,
        cache: FusionCache,
        presenter: Presenter,
        *,
        poll_interval_s: float = 0.3,
        timeout_s: float = 1.8,
        on_miss: Callable[[Device], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.cache = cache
        self.presenter = presenter
        self.poll_interval_s = poll_interval_s
        self.timeout_s = timeout_s
        self.on_miss = on_miss
        self._clock = clock
        self._lock = threading.Lock()
        self._waits: dict[str, tuple[threading.Event, threading.Thread]] = {}

    def resolve(self, device: Device) -> threading.Thread | None:
        """Present ``device`` now if its level is known, else start a bounded wait.

        Returns the wait thread, or None when the device was presented immediately
        or a concurrent resolve for the same device superseded this one.
        """
        cancelled = threading.Event()
        thread = threading.Thread(
            target=self._wait_for_level,
            args=(device, cancelled),
            name=f"battery-wait-{device.id}",
            daemon=True,
        )

        # Replacing the slot and registering the new wait happen under one lock
        # so that two resolves for the same device never both start a wait.
        with self._lock:
            previous = self._waits.pop(_wait_key(device), None)
            level = self.cache.level_for_device(device)
            if level is None:
                self._waits[_wait_key(device)] = (cancelled, thread)
        if previous is not None:
            previous[0].set()

        if level is not None:
            self.presenter.present(device.with_battery_level(level), level)
            return None

        if self.on_miss is not None:
            self.on_miss(device)
        if cancelled.is_set():
            return None
        thread.start()
        return thread

    def cancel(self, device: Device) -> None:
        with self._lock:
            wait = self._waits.pop(_wait_key(device), None)
        if wait is not None:
            wait[0].set()

    def cancel_all(self) -> None:
        with self._lock:
            waits = list(self._waits.values())
            self._waits.clear()
        for cancelled, _thread in waits:
            cancelled.set()

    def is_waiting(self, device: Device) -> bool:
        with self._lock:
            return _wait_key(device) in self._waits

    def _release(self, device: Device, cancelled: threading.Event) -> None:
        with self._lock:
            current = self._waits.get(_wait_key(device))
            if current is not None and current[0] is cancelled:
                del self._waits[_wait_key(device)]

    def _wait_for_level(self, device: Device, cancelled: threading.Event) -> None:
        deadline = self._clock() + self.timeout_s
        try:
            while True:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    break
                if cancelled.wait(min(self.poll_interval_s, remaining)):
                    return
                level = self.cache.level_for_device(device)
                if level is not None:
                    self.presenter.present(device.with_battery_level(level), level)
                    return

            if cancelled.is_set():
                return
            LOGGER.debug("No battery level for %s after %.1fs", device.name, self.timeout_s)
            self.presenter.present(device, None)
        finally:
            self._release(device, cancelled)
