from __future__ import annotations

import subprocess
import threading

import pytest

from batteryfuse.core.connections import ConnectedDevice, ConnectionWatcher, list_connected_devices
from batteryfuse.core.errors import ConnectionListError


def _cp(cmd: list[str], rc: int, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(cmd, rc, stdout=stdout, stderr=stderr)


def test_list_connected_devices_parses_and_deduplicates(monkeypatch: pytest.MonkeyPatch) -> None:
    stdout = (
        "Device 88:92:cc:11:22:33 OnePlus Buds 4\n"
        "Device 88:92:CC:11:22:33 OnePlus Buds 4\n"
        "[CHG] Controller 00:11:22:33:44:55 Discovering: no\n"
        "Device AA:BB:CC:DD:EE:FF JBL Flip 5\n"
    )

    def fake_run(cmd, check, capture_output, text):
        assert cmd == ["bluetoothctl", "devices", "Connected"]
        return _cp(cmd, 0, stdout=stdout)

    monkeypatch.setattr(subprocess, "run", fake_run)

    assert list_connected_devices() == [
        ConnectedDevice(address="88:92:CC:11:22:33", name="OnePlus Buds 4"),
        ConnectedDevice(address="AA:BB:CC:DD:EE:FF", name="JBL Flip 5"),
    ]


def test_list_connected_devices_raises_on_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        subprocess,
        "run",
        lambda cmd, check, capture_output, text: _cp(cmd, 1, stderr="org.bluez.Error.NotReady"),
    )

    with pytest.raises(ConnectionListError):
        list_connected_devices()


def test_list_connected_devices_raises_when_tool_missing(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(cmd, check, capture_output, text):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(ConnectionListError):
        list_connected_devices()


def test_watcher_reports_connects_and_disconnects() -> None:
    buds = ConnectedDevice(address="88:92:CC:11:22:33", name="OnePlus Buds 4")
    speaker = ConnectedDevice(address="AA:BB:CC:DD:EE:FF", name="JBL Flip 5")
    snapshots = [[buds], [buds, speaker], [speaker]]
    events: list[tuple[str, str, str | None]] = []

    watcher = ConnectionWatcher(
        lambda name, address: events.append(("connected", name, address)),
        lambda name, address: events.append(("disconnected", name, address)),
        lister=lambda: snapshots.pop(0),
    )
    for _ in range(3):
        watcher.poll_once()

    assert events == [
        ("connected", "OnePlus Buds 4", "88:92:CC:11:22:33"),
        ("connected", "JBL Flip 5", "AA:BB:CC:DD:EE:FF"),
        ("disconnected", "OnePlus Buds 4", "88:92:CC:11:22:33"),
    ]


def test_watcher_skips_tick_when_listing_fails() -> None:
    events: list[str] = []

    def failing_lister() -> list[ConnectedDevice]:
        raise ConnectionListError("bluetoothctl missing")

    watcher = ConnectionWatcher(
        lambda name, address: events.append(name),
        lambda name, address: events.append(name),
        lister=failing_lister,
    )
    watcher.poll_once()
    assert events == []


def test_run_calls_tick_after_every_poll() -> None:
    stop = threading.Event()
    ticks: list[int] = []
    polls: list[int] = []

    def lister() -> list[ConnectedDevice]:
        polls.append(len(polls))
        return []

    def on_tick() -> None:
        ticks.append(len(polls))
        if len(ticks) == 3:
            stop.set()

    watcher = ConnectionWatcher(
        lambda name, address: None,
        lambda name, address: None,
        lister=lister,
        interval_s=0.01,
        on_tick=on_tick,
    )
    watcher.run(stop)

    assert ticks == [1, 2, 3]
