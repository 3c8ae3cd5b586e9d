"""Refresh cycle fusing every synchronous probe into the cache."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence

from batteryfuse.core.cache import FusionCache, merge_battery_levels
from batteryfuse.probes.base import BatteryProbe

LOGGER = logging.getLogger(__name__)


class RefreshCycle:
    def __init__(
        self,
        cache: FusionCache,
        probes: Sequence[BatteryProbe],
        *,
        min_interval_s: float = 20.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.cache = cache
        self.probes = sorted(probes, key=lambda p: p.rank)
        self.min_interval_s = min_interval_s
        self._clock = clock
        self._lock = threading.Lock()
        self._last_completed: float | None = None

    @property
    def in_flight(self) -> bool:
        return self._lock.locked()

    def update_battery_statuses(self, *, force: bool = False) -> bool:
        """Run every probe, merge their readings and swap them into the cache.

        Returns False without touching the cache when another cycle is in
        flight, or when ``force`` is not set and the previous cycle completed
        less than ``min_interval_s`` ago.
        """
        if not self._lock.acquire(blocking=False):
            LOGGER.debug("Refresh cycle already in flight; skipping")
            return False
        try:
            if (
                not force
                and self._last_completed is not None
                and self._clock() - self._last_completed < self.min_interval_s
            ):
                return False

            addresses: dict[str, int] = {}
            names: dict[str, int] = {}
            for probe in self.probes:
                result = probe.collect()
                merge_battery_levels(addresses, result.addresses)
                merge_battery_levels(names, result.names)
                LOGGER.debug(
                    "%s probe reported %d address and %d name readings",
                    probe.name,
                    len(result.addresses),
                    len(result.names),
                )

            self.cache.swap(addresses, names)
            self._last_completed = self._clock()
            return True
        finally:
            self._lock.release()
