"""On-demand battery reads over the standard battery service.

One batch drives every requested peripheral through
``IDLE -> AWAITING_CONNECTION -> DISCOVERING_SERVICE ->
DISCOVERING_CHARACTERISTIC -> READING_VALUE -> FINISHED`` under a shared
deadline. Any failure finishes that peripheral without a level; retries only
happen on a later batch. Only one batch may run at a time.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any

from batteryfuse.core.errors import LiveReaderError, LiveReaderUnavailableError
from batteryfuse.core.fields import clamp_percentage
from batteryfuse.core.model import BatchReport, Lookup, LookupResult
from batteryfuse.live.central import BATTERY_LEVEL_UUID, BATTERY_SERVICE_UUID, BleakCentral, Central

LOGGER = logging.getLogger(__name__)


class TargetState(Enum):
    IDLE = auto()
    AWAITING_CONNECTION = auto()
    DISCOVERING_SERVICE = auto()
    DISCOVERING_CHARACTERISTIC = auto()
    READING_VALUE = auto()
    FINISHED = auto()


@dataclass
class _Target:
    platform_id: str
    lookups: list[Lookup]
    located: asyncio.Future[Any]
    state: TargetState = TargetState.IDLE
    level: int | None = None
    history: list[TargetState] = field(default_factory=list)

    def advance(self, state: TargetState) -> None:
        self.state = state
        self.history.append(state)


class LiveBatteryReader:
    def __init__(self, central: Central | None = None, *, timeout_s: float = 6.0) -> None:
        self._central = central or BleakCentral()
        self.timeout_s = timeout_s
        self._flight = threading.Lock()
        self.last_states: dict[str, list[TargetState]] = {}

    @property
    def in_flight(self) -> bool:
        return self._flight.locked()

    def fetch_battery_levels(self, lookups: Sequence[Lookup]) -> BatchReport:
        """Blocking entrypoint running one batch on a private event loop."""
        return asyncio.run(self.fetch_battery_levels_async(lookups))

    async def fetch_battery_levels_async(self, lookups: Sequence[Lookup]) -> BatchReport:
        if not lookups:
            return BatchReport(outcomes={})
        if not self._flight.acquire(blocking=False):
            LOGGER.debug("Live battery batch already in flight; rejecting %d lookups", len(lookups))
            return BatchReport(outcomes={}, rejected=True)
        try:
            return await self._run_batch(lookups)
        finally:
            self._flight.release()

    async def _run_batch(self, lookups: Sequence[Lookup]) -> BatchReport:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_s

        # Lookups sharing a peripheral share one connection; each keeps its own keys.
        targets: dict[str, _Target] = {}
        for lookup in lookups:
            platform_id = lookup.platform_id.upper()
            if platform_id in targets:
                targets[platform_id].lookups.append(lookup)
            else:
                targets[platform_id] = _Target(platform_id, [lookup], loop.create_future())

        def _locate(platform_id: str, handle: Any) -> None:
            target = targets.get(platform_id.upper())
            if target is not None and not target.located.done():
                target.located.set_result(handle)

        for platform_id, handle in self._central.retrieve(list(targets)).items():
            _locate(platform_id, handle)

        tasks = {
            platform_id: asyncio.create_task(self._drive(target, deadline))
            for platform_id, target in targets.items()
        }

        try:
            if any(not target.located.done() for target in targets.values()):
                async with self._central.scan(BATTERY_SERVICE_UUID, _locate):
                    await self._wait(tasks, deadline)
            else:
                await self._wait(tasks, deadline)
        except LiveReaderUnavailableError as exc:
            LOGGER.debug("Live battery scan unavailable: %s", exc)
            for platform_id, target in targets.items():
                if not target.located.done():
                    tasks[platform_id].cancel()
            await self._wait(tasks, deadline)

        pending = [task for task in tasks.values() if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        outcomes: dict[str, LookupResult | None] = {}
        results: list[LookupResult] = []
        for platform_id, target in targets.items():
            if target.state is not TargetState.FINISHED:
                LOGGER.debug("Live battery read for %s did not finish before the deadline", platform_id)
                target.advance(TargetState.FINISHED)
            target_results = [
                LookupResult(
                    platform_id=platform_id,
                    level=target.level,
                    address_key=lookup.address_key,
                    name_key=lookup.name_key,
                )
                for lookup in target.lookups
                if target.level is not None
            ]
            outcomes[platform_id] = target_results[0] if target_results else None
            results.extend(target_results)
        self.last_states = {platform_id: list(target.history) for platform_id, target in targets.items()}
        return BatchReport(outcomes=outcomes, results=tuple(results))

    @staticmethod
    async def _wait(tasks: dict[str, asyncio.Task[None]], deadline: float) -> None:
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            return
        await asyncio.wait(list(tasks.values()), timeout=remaining)

    async def _drive(self, target: _Target, deadline: float) -> None:
        target.advance(TargetState.AWAITING_CONNECTION)
        handle = await target.located
        remaining = max(deadline - asyncio.get_running_loop().time(), 0.1)

        try:
            async with self._central.connect(handle, timeout_s=remaining) as session:
                target.advance(TargetState.DISCOVERING_SERVICE)
                service = session.find_service(BATTERY_SERVICE_UUID)
                if service is None:
                    LOGGER.debug("%s exposes no battery service", target.platform_id)
                    return self._finish(target, None)

                target.advance(TargetState.DISCOVERING_CHARACTERISTIC)
                characteristic = session.find_characteristic(service, BATTERY_LEVEL_UUID)
                if characteristic is None:
                    LOGGER.debug("%s exposes no battery level characteristic", target.platform_id)
                    return self._finish(target, None)

                target.advance(TargetState.READING_VALUE)
                data = await session.read(characteristic)
        except (LiveReaderError, OSError, asyncio.TimeoutError) as exc:
            LOGGER.debug("Live battery read failed for %s: %s", target.platform_id, exc)
            return self._finish(target, None)

        if not data:
            return self._finish(target, None)

        return self._finish(target, clamp_percentage(data[0]))

    @staticmethod
    def _finish(target: _Target, level: int | None) -> None:
        target.level = level
        target.advance(TargetState.FINISHED)
