"""Service layer wiring probes, cache, live reader and resolver together."""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor

from batteryfuse.core.cache import CacheSnapshot, FusionCache
from batteryfuse.core.classify import classify_device
from batteryfuse.core.config import Settings, load_settings
from batteryfuse.core.field_maps import LoadedFieldMaps, load_field_maps
from batteryfuse.core.fusion import RefreshCycle
from batteryfuse.core.identity import device_identity, missing_battery_key
from batteryfuse.core.model import BatchReport, Device, Lookup, ProbeResult
from batteryfuse.core.resolver import ConnectionResolver, LogPresenter, Presenter
from batteryfuse.live.reader import LiveBatteryReader
from batteryfuse.probes.base import BatteryProbe
from batteryfuse.probes.inventory import InventoryProbe
from batteryfuse.probes.power import PowerProbe
from batteryfuse.probes.preferences import PreferencesProbe
from batteryfuse.probes.registry import RegistryProbe

LOGGER = logging.getLogger(__name__)


def _device_key(device: Device) -> str:
    return missing_battery_key(device.name, device.address)


class BatteryService:
    def __init__(
        self,
        *,
        settings: Settings | None = None,
        field_maps: LoadedFieldMaps | None = None,
        probes: Sequence[BatteryProbe] | None = None,
        preferences: PreferencesProbe | None = None,
        power_probe: PowerProbe | None = None,
        reader: LiveBatteryReader | None = None,
        presenter: Presenter | None = None,
        cache: FusionCache | None = None,
    ) -> None:
        self.settings = settings or load_settings()
        loaded = field_maps or load_field_maps()
        self.load_warnings = loaded.warnings
        probe_settings = self.settings.probes

        self.cache = cache or FusionCache()
        self.preferences = preferences or PreferencesProbe(
            loaded.get("preferences"),
            loaded.get("core_bluetooth"),
            probe_settings.preferences_path,
        )
        self.power_probe = power_probe
        if self.power_probe is None and probe_settings.power_enabled:
            self.power_probe = PowerProbe(
                probe_settings.power_command,
                cooldown_s=probe_settings.power_cooldown_s,
                excluded_prefixes=probe_settings.power_excluded_prefixes,
            )
        self.probes = list(probes) if probes is not None else self._build_probes(loaded)

        self.refresh_cycle = RefreshCycle(
            self.cache,
            self.probes,
            min_interval_s=self.settings.refresh.min_interval_s,
        )
        self.reader = reader or LiveBatteryReader(timeout_s=self.settings.live.timeout_s)
        self.presenter = presenter or LogPresenter()
        self.resolver = ConnectionResolver(
            self.cache,
            self,
            poll_interval_s=self.settings.resolver.poll_interval_s,
            timeout_s=self.settings.resolver.timeout_s,
            on_miss=self._on_resolver_miss,
        )

        self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="batteryfuse-refresh")
        self._live_worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="batteryfuse-live")
        self._lock = threading.RLock()
        self._devices: dict[str, Device] = {}
        self._missing_logged: set[str] = set()
        self.last_connected_device: Device | None = None
        self._pending_refresh: Future[None] | None = None

    def _build_probes(self, loaded: LoadedFieldMaps) -> list[BatteryProbe]:
        probe_settings = self.settings.probes
        probes: list[BatteryProbe] = []
        if probe_settings.registry_enabled:
            probes.append(RegistryProbe(loaded.get("registry"), probe_settings.registry_command))
        if probe_settings.preferences_enabled:
            probes.append(self.preferences)
        if probe_settings.inventory_enabled:
            probes.append(
                InventoryProbe(
                    loaded.get("inventory"),
                    probe_settings.inventory_command,
                    cooldown_s=probe_settings.inventory_cooldown_s,
                )
            )
        if self.power_probe is not None:
            probes.append(self.power_probe)
        return probes

    @property
    def connected_devices(self) -> list[Device]:
        with self._lock:
            return list(self._devices.values())

    def battery_level(self, name: str, address: str | None = None) -> int | None:
        return self.cache.level_for(name, address)

    def handle_connected(self, name: str, address: str | None = None) -> Device:
        """Track a new connection, refresh levels and hand it to the resolver.

        The refresh is forced so a reconnect never presents a level cached
        before the device went away.
        """
        device = Device(name=name, address=address, device_class=classify_device(name))
        with self._lock:
            self._devices[_device_key(device)] = device
            self.last_connected_device = device
        LOGGER.info("Device connected: %s (%s)", name, address or "N/A")
        self.refresh_cycle.update_battery_statuses(force=True)
        self.apply_connected_levels()
        self.resolver.resolve(device)
        return device

    def handle_disconnected(self, name: str, address: str | None = None) -> Device | None:
        with self._lock:
            device = self._devices.pop(missing_battery_key(name, address), None)
            last = self.last_connected_device
            if device is not None and last is not None and _device_key(last) == _device_key(device):
                remaining = list(self._devices.values())
                self.last_connected_device = remaining[-1] if remaining else None
            still_connected = bool(self._devices)
        if device is None:
            return None
        LOGGER.info("Device disconnected: %s (%s)", name, address or "N/A")
        self.resolver.cancel(device)
        if still_connected:
            self.refresh_connected_device_batteries()
        return device

    def present(self, device: Device, battery_level: int | None) -> None:
        """Store a resolved level on the tracked device, then forward it."""
        if battery_level is not None:
            with self._lock:
                key = _device_key(device)
                if key in self._devices:
                    self._devices[key] = self._devices[key].with_battery_level(battery_level)
                    self._clear_missing(device)
                last = self.last_connected_device
                if last is not None and _device_key(last) == key:
                    self.last_connected_device = self._devices.get(key, last)
        self.presenter.present(device, battery_level)

    def refresh_connected_device_batteries(self, *, force: bool = True) -> Future[None]:
        """Re-fuse every connected device on the refresh worker.

        Unforced refreshes are what the watch loop issues on every tick; one
        still queued is returned instead of submitting another.
        """
        with self._lock:
            pending = self._pending_refresh
            if not force and pending is not None and not pending.done():
                return pending
            future = self._worker.submit(self._refresh_connected, force)
            if not force:
                self._pending_refresh = future
        return future

    def _on_resolver_miss(self, device: Device) -> None:
        self._worker.submit(self._fill_missing)

    def _refresh_connected(self, force: bool) -> None:
        if not self.refresh_cycle.update_battery_statuses(force=force) and not force:
            return
        self._fill_missing()

    def _fill_missing(self) -> None:
        self.apply_connected_levels()
        self.request_power_fallback("missing battery after refresh")
        self.request_live_refresh()

    def apply_connected_levels(self) -> list[Device]:
        with self._lock:
            updated: dict[str, Device] = {}
            for key, device in self._devices.items():
                level = self.cache.level_for_device(device)
                if level is None:
                    level = device.battery_level
                updated[key] = device.with_battery_level(level)
                if level is None:
                    self._log_missing(device)
                else:
                    self._clear_missing(device)
            self._devices = updated
            if self.last_connected_device is not None:
                self.last_connected_device = updated.get(
                    _device_key(self.last_connected_device), self.last_connected_device
                )
            return list(updated.values())

    def _missing_devices(self) -> list[Device]:
        return [device for device in self.connected_devices if self.cache.level_for_device(device) is None]

    def request_power_fallback(self, reason: str) -> list[str]:
        """Merge power utility readings when a connected device has no level.

        Returns the name keys newly filled by the fallback.
        """
        if self.power_probe is None or not self._missing_devices():
            return []

        LOGGER.debug("Triggering power utility fallback (%s)", reason)
        result = self.power_probe.collect()
        if not result.names:
            return []

        newly_filled = self.cache.merge_name_levels(result.names)
        for key in newly_filled:
            LOGGER.info("Power utility reported %d%% for %s", result.names[key], key)
        if newly_filled:
            self.apply_connected_levels()
        return newly_filled

    def build_lookups(self, devices: Sequence[Device]) -> list[Lookup]:
        snapshot = self.preferences.platform_snapshot()
        if not snapshot.has_entries:
            return []

        lookups: list[Lookup] = []
        seen: set[str] = set()
        for device in devices:
            key = device_identity(device)
            if key.is_empty:
                continue
            platform_id = snapshot.by_address.get(key.address) if key.address else None
            if platform_id is None and key.name:
                platform_id = snapshot.by_name.get(key.name)
            if platform_id is None or platform_id in seen:
                continue
            seen.add(platform_id)

            canonical_name = snapshot.names_by_id.get(platform_id, key.name)
            lookups.append(
                Lookup(
                    platform_id=platform_id,
                    address_key=key.address or None,
                    name_key=canonical_name or None,
                )
            )
        return lookups

    def request_live_refresh(self) -> Future[BatchReport] | None:
        if not self.settings.live.enabled or self.reader.in_flight:
            return None
        if not self._missing_devices():
            return None

        lookups = self.build_lookups(self.connected_devices)
        if not lookups:
            return None
        return self._live_worker.submit(self._run_live_batch, lookups)

    def _run_live_batch(self, lookups: list[Lookup]) -> BatchReport:
        report = self.reader.fetch_battery_levels(lookups)
        if self.cache.merge_live_results(report.results):
            self.apply_connected_levels()
        return report

    def _log_missing(self, device: Device) -> None:
        key = _device_key(device)
        if key in self._missing_logged:
            return
        self._missing_logged.add(key)
        name = device.name.strip() or "unknown device"
        address = (device.address or "").strip()
        if not address or address.lower() == "unknown":
            address = "N/A"
        LOGGER.warning("Battery percentage unavailable for %s (%s)", name, address)

    def _clear_missing(self, device: Device) -> None:
        self._missing_logged.discard(_device_key(device))

    def close(self) -> None:
        self.resolver.cancel_all()
        self._worker.shutdown(wait=False, cancel_futures=True)
        self._live_worker.shutdown(wait=False, cancel_futures=True)

    def collect_probe_results(self) -> list[tuple[str, ProbeResult]]:
        return [(probe.name, probe.collect()) for probe in self.probes]

    def refresh_now(self) -> CacheSnapshot:
        self.refresh_cycle.update_battery_statuses(force=True)
        self.apply_connected_levels()
        return self.cache.snapshot()

    def read_live(self, platform_ids: Sequence[str]) -> BatchReport:
        report = self.reader.fetch_battery_levels([Lookup(platform_id=platform_id) for platform_id in platform_ids])
        self.cache.merge_live_results(report.results)
        return report
