from __future__ import annotations

import asyncio
import threading
import time
from contextlib import asynccontextmanager

from batteryfuse.core.cache import FusionCache
from batteryfuse.core.errors import LiveReaderError, LiveReaderUnavailableError
from batteryfuse.core.model import Lookup
from batteryfuse.live.central import BATTERY_LEVEL_UUID, BATTERY_SERVICE_UUID
from batteryfuse.live.reader import LiveBatteryReader, TargetState

BUDS = "0A1B2C3D-0000-1111-2222-333344445555"
SPEAKER = "0A1B2C3D-0000-1111-2222-333344446666"
GHOST = "0A1B2C3D-0000-1111-2222-333344447777"


class FakeSession:
    def __init__(self, data: bytes = b"\x50", *, service: bool = True, characteristic: bool = True) -> None:
        self.data = data
        self.service = service
        self.characteristic = characteristic

    def find_service(self, uuid: str):
        assert uuid == BATTERY_SERVICE_UUID
        return "battery-service" if self.service else None

    def find_characteristic(self, service, uuid: str):
        assert uuid == BATTERY_LEVEL_UUID
        return "battery-level" if self.characteristic else None

    async def read(self, characteristic) -> bytes:
        return self.data


class FakeCentral:
    def __init__(self, sessions, *, known=(), advertised=(), scan_error=None, connect_delay_s: float = 0.0) -> None:
        self.sessions = sessions
        self.known = set(known)
        self.advertised = list(advertised)
        self.scan_error = scan_error
        self.connect_delay_s = connect_delay_s
        self.scans: list[str] = []
        self.connects: list[str] = []
        self.connecting = threading.Event()

    def retrieve(self, platform_ids):
        return {pid: f"handle-{pid}" for pid in platform_ids if pid in self.known}

    @asynccontextmanager
    async def scan(self, service_uuid, on_found):
        self.scans.append(service_uuid)
        if self.scan_error is not None:
            raise self.scan_error
        for pid in self.advertised:
            on_found(pid, f"handle-{pid}")
        yield

    @asynccontextmanager
    async def connect(self, handle, *, timeout_s):
        self.connecting.set()
        self.connects.append(handle)
        if self.connect_delay_s:
            await asyncio.sleep(self.connect_delay_s)
        session = self.sessions[handle.removeprefix("handle-")]
        if isinstance(session, Exception):
            raise session
        yield session


def test_batch_reports_every_target_within_deadline() -> None:
    central = FakeCentral(
        {BUDS: FakeSession(b"\x50"), SPEAKER: FakeSession(b"\x1e")},
        known=[BUDS, SPEAKER],
    )
    reader = LiveBatteryReader(central, timeout_s=0.3)
    lookups = [
        Lookup(platform_id=BUDS, address_key="aabbccddeeff", name_key="mybuds"),
        Lookup(platform_id=SPEAKER),
        Lookup(platform_id=GHOST),
    ]

    started = time.monotonic()
    report = reader.fetch_battery_levels(lookups)
    elapsed = time.monotonic() - started

    assert elapsed < 2.0
    assert not report.rejected
    assert set(report.outcomes) == {BUDS, SPEAKER, GHOST}
    assert len(report.results) == 2
    assert report.missing == [GHOST]
    assert report.outcomes[BUDS].level == 80
    assert report.outcomes[BUDS].address_key == "aabbccddeeff"
    assert report.outcomes[SPEAKER].level == 30
    assert central.scans == [BATTERY_SERVICE_UUID]
    assert reader.last_states[GHOST][-1] is TargetState.FINISHED
    assert reader.last_states[BUDS] == [
        TargetState.AWAITING_CONNECTION,
        TargetState.DISCOVERING_SERVICE,
        TargetState.DISCOVERING_CHARACTERISTIC,
        TargetState.READING_VALUE,
        TargetState.FINISHED,
    ]


def test_scan_locates_unknown_targets() -> None:
    central = FakeCentral({BUDS: FakeSession(b"\x64")}, advertised=[BUDS])
    reader = LiveBatteryReader(central, timeout_s=1.0)

    report = reader.fetch_battery_levels([Lookup(platform_id=BUDS.lower())])
    assert report.outcomes[BUDS].level == 100


def test_known_targets_skip_scan() -> None:
    central = FakeCentral({BUDS: FakeSession()}, known=[BUDS])
    LiveBatteryReader(central, timeout_s=1.0).fetch_battery_levels([Lookup(platform_id=BUDS)])
    assert central.scans == []


def test_missing_service_or_characteristic_finishes_without_level() -> None:
    central = FakeCentral(
        {
            BUDS: FakeSession(service=False),
            SPEAKER: FakeSession(characteristic=False),
            GHOST: FakeSession(b""),
        },
        known=[BUDS, SPEAKER, GHOST],
    )
    reader = LiveBatteryReader(central, timeout_s=1.0)

    report = reader.fetch_battery_levels([Lookup(platform_id=pid) for pid in (BUDS, SPEAKER, GHOST)])
    assert report.outcomes == {BUDS: None, SPEAKER: None, GHOST: None}
    assert TargetState.DISCOVERING_CHARACTERISTIC not in reader.last_states[BUDS]
    assert TargetState.READING_VALUE not in reader.last_states[SPEAKER]


def test_connect_failure_finishes_without_level() -> None:
    central = FakeCentral({BUDS: LiveReaderError("connect failed"), SPEAKER: FakeSession(b"\x0a")}, known=[BUDS, SPEAKER])
    report = LiveBatteryReader(central, timeout_s=1.0).fetch_battery_levels(
        [Lookup(platform_id=BUDS), Lookup(platform_id=SPEAKER)]
    )
    assert report.outcomes[BUDS] is None
    assert report.outcomes[SPEAKER].level == 10


def test_unavailable_scan_still_reads_known_targets() -> None:
    central = FakeCentral(
        {BUDS: FakeSession(b"\x28")},
        known=[BUDS],
        scan_error=LiveReaderUnavailableError("adapter off"),
    )
    report = LiveBatteryReader(central, timeout_s=1.0).fetch_battery_levels(
        [Lookup(platform_id=BUDS), Lookup(platform_id=GHOST)]
    )
    assert report.outcomes == {BUDS: report.outcomes[BUDS], GHOST: None}
    assert report.outcomes[BUDS].level == 40


def test_slow_connect_is_abandoned_at_deadline() -> None:
    central = FakeCentral({BUDS: FakeSession()}, known=[BUDS], connect_delay_s=5.0)
    reader = LiveBatteryReader(central, timeout_s=0.2)

    started = time.monotonic()
    report = reader.fetch_battery_levels([Lookup(platform_id=BUDS)])
    assert time.monotonic() - started < 2.0
    assert report.outcomes == {BUDS: None}
    assert reader.last_states[BUDS][-1] is TargetState.FINISHED


def test_second_batch_is_rejected_while_one_is_in_flight() -> None:
    central = FakeCentral({BUDS: FakeSession()}, known=[BUDS], connect_delay_s=0.5)
    reader = LiveBatteryReader(central, timeout_s=2.0)

    reports = []
    worker = threading.Thread(target=lambda: reports.append(reader.fetch_battery_levels([Lookup(platform_id=BUDS)])))
    worker.start()
    assert central.connecting.wait(5)

    assert reader.in_flight
    rejected = reader.fetch_battery_levels([Lookup(platform_id=SPEAKER)])
    assert rejected.rejected
    assert rejected.outcomes == {}

    worker.join(5)
    assert reports[0].outcomes[BUDS].level == 80
    assert not reader.in_flight


def test_empty_batch() -> None:
    report = LiveBatteryReader(FakeCentral({}), timeout_s=1.0).fetch_battery_levels([])
    assert report.outcomes == {}
    assert not report.rejected


def test_lookups_sharing_a_peripheral_keep_their_own_keys() -> None:
    central = FakeCentral({BUDS: FakeSession(b"\x41")}, known=[BUDS])
    reader = LiveBatteryReader(central, timeout_s=0.3)

    report = reader.fetch_battery_levels(
        [
            Lookup(platform_id=BUDS.lower(), address_key="aabbccddeeff"),
            Lookup(platform_id=BUDS, name_key="mybuds"),
        ]
    )

    assert central.connects == [f"handle-{BUDS}"]
    assert list(report.outcomes) == [BUDS]
    assert report.outcomes[BUDS].platform_id == BUDS
    assert [(result.platform_id, result.address_key, result.name_key) for result in report.results] == [
        (BUDS, "aabbccddeeff", None),
        (BUDS, None, "mybuds"),
    ]

    cache = FusionCache()
    assert cache.merge_live_results(report.results)
    assert cache.level_for("Some Name", "AA:BB:CC:DD:EE:FF") == 65
    assert cache.level_for("My Buds") == 65
