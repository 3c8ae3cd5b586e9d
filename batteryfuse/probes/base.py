"""Battery probe interfaces and the shared subprocess runner."""

from __future__ import annotations

import logging
import subprocess
import threading
import time
from collections.abc import Callable, Sequence
from typing import Protocol

from batteryfuse.core.errors import ProbeError, ProbeUnavailableError
from batteryfuse.core.model import ProbeResult

LOGGER = logging.getLogger(__name__)


class BatteryProbe(Protocol):
    name: str
    rank: int

    def collect(self) -> ProbeResult:
        """Read battery levels from the source. Never raises; failures yield an empty result."""


def run_command(cmd: Sequence[str]) -> str:
    """Run an external utility and return its stdout.

    Raises ProbeUnavailableError when the tool is missing, exits non-zero, or
    prints nothing.
    """
    try:
        result = subprocess.run(
            list(cmd),
            check=False,
            capture_output=True,
            text=True,
        )
    except (FileNotFoundError, PermissionError) as exc:
        raise ProbeUnavailableError(f"{cmd[0]} is not available: {exc}") from exc
    except OSError as exc:
        raise ProbeUnavailableError(f"{' '.join(cmd)} could not be started: {exc}") from exc

    if result.returncode != 0:
        stderr = (result.stderr or "").strip()
        raise ProbeUnavailableError(f"{' '.join(cmd)} exited with {result.returncode}: {stderr}")
    if not (result.stdout or "").strip():
        raise ProbeUnavailableError(f"{' '.join(cmd)} produced no output")
    return result.stdout


class CommandProbe:
    """Probe backed by an external command, single-flight with a cooldown.

    While a run is in flight, or within ``cooldown_s`` of the previous run, the
    previous result is returned instead of spawning the command again.
    """

    name = "command"
    rank = 0

    def __init__(
        self,
        command: Sequence[str],
        *,
        cooldown_s: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.command = tuple(command)
        self.cooldown_s = cooldown_s
        self._clock = clock
        self._lock = threading.Lock()
        self._last_run: float | None = None
        self._last_result = ProbeResult()

    def parse(self, output: str) -> ProbeResult:
        raise NotImplementedError

    def collect(self) -> ProbeResult:
        if not self._lock.acquire(blocking=False):
            LOGGER.debug("%s probe already running; reusing previous result", self.name)
            return self._last_result
        try:
            now = self._clock()
            if self._last_run is not None and now - self._last_run < self.cooldown_s:
                return self._last_result

            try:
                result = self.parse(run_command(self.command))
            except ProbeError as exc:
                LOGGER.debug("%s probe produced no readings: %s", self.name, exc)
                result = ProbeResult()

            self._last_result = result
            self._last_run = self._clock()
            return result
        finally:
            self._lock.release()
