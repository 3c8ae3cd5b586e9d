from __future__ import annotations

import threading
import time

from batteryfuse.core.cache import FusionCache
from batteryfuse.core.model import Device
from batteryfuse.core.resolver import ConnectionResolver


class RecordingPresenter:
    def __init__(self) -> None:
        self.presented: list[tuple[Device, int | None, float]] = []
        self.event = threading.Event()

    def present(self, device: Device, battery_level: int | None) -> None:
        self.presented.append((device, battery_level, time.monotonic()))
        self.event.set()


def test_cached_level_is_presented_immediately() -> None:
    cache = FusionCache()
    cache.swap({"aabbccddeeff": 70}, {})
    presenter = RecordingPresenter()
    misses: list[Device] = []
    resolver = ConnectionResolver(cache, presenter, on_miss=misses.append)

    thread = resolver.resolve(Device(name="My Buds", address="AA:BB:CC:DD:EE:FF"))

    assert thread is None
    assert misses == []
    device, level, _ = presenter.presented[0]
    assert level == 70
    assert device.battery_level == 70


def test_level_arriving_mid_wait_is_presented_early() -> None:
    cache = FusionCache()
    presenter = RecordingPresenter()
    misses: list[Device] = []
    resolver = ConnectionResolver(cache, presenter, poll_interval_s=0.02, timeout_s=2.0, on_miss=misses.append)

    started = time.monotonic()
    thread = resolver.resolve(Device(name="My Buds"))
    assert thread is not None
    assert len(misses) == 1

    time.sleep(0.1)
    cache.merge_name_levels({"mybuds": 55})
    thread.join(5)

    assert [entry[1] for entry in presenter.presented] == [55]
    assert presenter.presented[0][2] - started < 1.0
    assert not resolver.is_waiting(Device(name="My Buds"))


def test_timeout_presents_unknown_level() -> None:
    presenter = RecordingPresenter()
    resolver = ConnectionResolver(FusionCache(), presenter, poll_interval_s=0.05, timeout_s=0.3)

    started = time.monotonic()
    thread = resolver.resolve(Device(name="My Buds"))
    thread.join(5)

    assert len(presenter.presented) == 1
    device, level, presented_at = presenter.presented[0]
    assert level is None
    assert device.battery_level is None
    assert 0.3 <= presented_at - started < 0.3 + 2 * 0.05 + 0.15


def test_default_timings_present_level_arriving_after_half_a_second() -> None:
    cache = FusionCache()
    presenter = RecordingPresenter()
    resolver = ConnectionResolver(cache, presenter)

    started = time.monotonic()
    thread = resolver.resolve(Device(name="My Buds"))
    timer = threading.Timer(0.5, cache.merge_name_levels, args=({"mybuds": 42},))
    timer.start()
    thread.join(5)
    timer.join(5)

    assert [entry[1] for entry in presenter.presented] == [42]
    assert 0.5 <= presenter.presented[0][2] - started < 1.0


def test_concurrent_resolves_for_one_device_start_a_single_wait() -> None:
    presenter = RecordingPresenter()
    entered = threading.Event()
    release = threading.Event()
    misses: list[Device] = []

    def on_miss(device: Device) -> None:
        misses.append(device)
        if len(misses) == 1:
            entered.set()
            release.wait(5)

    resolver = ConnectionResolver(
        FusionCache(), presenter, poll_interval_s=0.02, timeout_s=0.2, on_miss=on_miss
    )
    first_results: list[threading.Thread | None] = []
    first = threading.Thread(target=lambda: first_results.append(resolver.resolve(Device(name="My Buds"))))
    first.start()
    assert entered.wait(5)

    second = resolver.resolve(Device(name="My Buds"))
    release.set()
    first.join(5)
    assert second is not None
    second.join(5)

    assert first_results == [None]
    assert len(misses) == 2
    assert [entry[1] for entry in presenter.presented] == [None]
    assert not resolver.is_waiting(Device(name="My Buds"))


def test_disconnect_cancels_wait_without_presenting() -> None:
    presenter = RecordingPresenter()
    resolver = ConnectionResolver(FusionCache(), presenter, poll_interval_s=0.02, timeout_s=0.3)
    device = Device(name="My Buds", address="AA:BB:CC:DD:EE:FF")

    thread = resolver.resolve(device)
    assert resolver.is_waiting(device)
    resolver.cancel(device)
    thread.join(5)

    assert presenter.presented == []
    assert not resolver.is_waiting(device)


def test_reconnect_restarts_wait() -> None:
    presenter = RecordingPresenter()
    resolver = ConnectionResolver(FusionCache(), presenter, poll_interval_s=0.02, timeout_s=0.3)

    first = resolver.resolve(Device(name="My Buds", address="AA:BB:CC:DD:EE:FF"))
    second = resolver.resolve(Device(name="My Buds", address="aa-bb-cc-dd-ee-ff"))
    first.join(5)
    second.join(5)

    assert len(presenter.presented) == 1
    assert presenter.presented[0][1] is None


def test_cancel_all() -> None:
    presenter = RecordingPresenter()
    resolver = ConnectionResolver(FusionCache(), presenter, poll_interval_s=0.02, timeout_s=0.3)

    threads = [resolver.resolve(Device(name=name)) for name in ("Left", "Right")]
    resolver.cancel_all()
    for thread in threads:
        thread.join(5)

    assert presenter.presented == []
