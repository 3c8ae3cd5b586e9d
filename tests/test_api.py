from __future__ import annotations

import pytest

from batteryfuse.api import CacheSnapshot, Client, Device, DeviceClass
from batteryfuse.core.config import LiveSettings, ProbeSettings, Settings


class RecordingPresenter:
    def __init__(self) -> None:
        self.presented: list[tuple[Device, int | None]] = []

    def present(self, device: Device, battery_level: int | None) -> None:
        self.presented.append((device, battery_level))


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch, tmp_path):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    settings = Settings(
        probes=ProbeSettings(
            registry_enabled=False,
            preferences_enabled=False,
            inventory_enabled=False,
            power_enabled=False,
            preferences_path=str(tmp_path / "missing.plist"),
        ),
        live=LiveSettings(enabled=False),
    )
    client = Client(settings=settings, presenter=RecordingPresenter())
    yield client
    client.close()


def test_public_client_refresh_without_probes(client: Client) -> None:
    assert client.load_warnings == ()
    assert client.refresh() == CacheSnapshot(by_address={}, by_name={})


def test_public_client_presents_cached_level(client: Client) -> None:
    client._service.cache.merge_name_levels({"airpodsmax": 42})

    device = client.device_connected("AirPods Max")
    assert device.device_class is DeviceClass.AIRPODS_MAX
    assert client.battery_level("AirPods Max") == 42

    presenter = client._service.presenter
    assert presenter.presented[0][1] == 42
    assert [d.name for d in client.connected_devices] == ["AirPods Max"]

    assert client.device_disconnected("AirPods Max") is not None
    assert client.connected_devices == []
