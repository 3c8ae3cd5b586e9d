"""Configuration loading for batteryfuse.

The configuration is an optional YAML file at
``$XDG_CONFIG_HOME/batteryfuse/config.yaml``. It is validated against the
packaged JSON schema and merged over the built-in defaults.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from batteryfuse.core.errors import ConfigLoadError, ConfigValidationError
from batteryfuse.core.yaml_loader import load_yaml_text

REGISTRY_COMMAND = ("ioreg", "-r", "-a", "-l", "-c", "AppleDeviceManagementHIDEventService")
PREFERENCES_PATH = "/Library/Preferences/com.apple.Bluetooth.plist"
INVENTORY_COMMAND = ("system_profiler", "SPBluetoothDataType", "-json")
POWER_COMMAND = ("pmset", "-g", "accps")
WATCH_COMMAND = ("bluetoothctl", "devices", "Connected")


@dataclass(frozen=True)
class RefreshSettings:
    min_interval_s: float = 20.0


@dataclass(frozen=True)
class ProbeSettings:
    registry_enabled: bool = True
    registry_command: tuple[str, ...] = REGISTRY_COMMAND
    preferences_enabled: bool = True
    preferences_path: str = PREFERENCES_PATH
    inventory_enabled: bool = True
    inventory_command: tuple[str, ...] = INVENTORY_COMMAND
    inventory_cooldown_s: float = 5.0
    power_enabled: bool = True
    power_command: tuple[str, ...] = POWER_COMMAND
    power_cooldown_s: float = 5.0
    power_excluded_prefixes: tuple[str, ...] = ("internalbattery",)


@dataclass(frozen=True)
class LiveSettings:
    enabled: bool = True
    timeout_s: float = 6.0


@dataclass(frozen=True)
class ResolverSettings:
    poll_interval_s: float = 0.3
    timeout_s: float = 1.8


@dataclass(frozen=True)
class WatchSettings:
    interval_s: float = 3.0
    command: tuple[str, ...] = WATCH_COMMAND


@dataclass(frozen=True)
class Settings:
    refresh: RefreshSettings = field(default_factory=RefreshSettings)
    probes: ProbeSettings = field(default_factory=ProbeSettings)
    live: LiveSettings = field(default_factory=LiveSettings)
    resolver: ResolverSettings = field(default_factory=ResolverSettings)
    watch: WatchSettings = field(default_factory=WatchSettings)
    log_level: str = "WARNING"


def config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "batteryfuse/config.yaml"


def _load_schema_validator() -> Any:
    schema_text = resources.files("batteryfuse.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _read_config(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"Could not read config file {path}: {exc}") from exc

    try:
        loaded = load_yaml_text(content)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigValidationError(f"Config file {path} must contain a mapping at root")
    return loaded


def _validate(doc: dict[str, Any], source: Path) -> None:
    try:
        _load_schema_validator().validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc


def settings_from_dict(doc: dict[str, Any]) -> Settings:
    defaults = Settings()
    refresh = doc.get("refresh", {})
    probes = doc.get("probes", {})
    registry = probes.get("registry", {})
    preferences = probes.get("preferences", {})
    inventory = probes.get("inventory", {})
    power = probes.get("power", {})
    live = doc.get("live", {})
    resolver = doc.get("resolver", {})
    watch = doc.get("watch", {})

    probe_defaults = defaults.probes
    return Settings(
        refresh=RefreshSettings(
            min_interval_s=float(refresh.get("min_interval_s", defaults.refresh.min_interval_s)),
        ),
        probes=ProbeSettings(
            registry_enabled=registry.get("enabled", probe_defaults.registry_enabled),
            registry_command=tuple(registry.get("command", probe_defaults.registry_command)),
            preferences_enabled=preferences.get("enabled", probe_defaults.preferences_enabled),
            preferences_path=preferences.get("path", probe_defaults.preferences_path),
            inventory_enabled=inventory.get("enabled", probe_defaults.inventory_enabled),
            inventory_command=tuple(inventory.get("command", probe_defaults.inventory_command)),
            inventory_cooldown_s=float(inventory.get("cooldown_s", probe_defaults.inventory_cooldown_s)),
            power_enabled=power.get("enabled", probe_defaults.power_enabled),
            power_command=tuple(power.get("command", probe_defaults.power_command)),
            power_cooldown_s=float(power.get("cooldown_s", probe_defaults.power_cooldown_s)),
            power_excluded_prefixes=tuple(
                prefix.lower()
                for prefix in power.get("excluded_prefixes", probe_defaults.power_excluded_prefixes)
            ),
        ),
        live=LiveSettings(
            enabled=live.get("enabled", defaults.live.enabled),
            timeout_s=float(live.get("timeout_s", defaults.live.timeout_s)),
        ),
        resolver=ResolverSettings(
            poll_interval_s=float(resolver.get("poll_interval_s", defaults.resolver.poll_interval_s)),
            timeout_s=float(resolver.get("timeout_s", defaults.resolver.timeout_s)),
        ),
        watch=WatchSettings(
            interval_s=float(watch.get("interval_s", defaults.watch.interval_s)),
            command=tuple(watch.get("command", defaults.watch.command)),
        ),
        log_level=doc.get("logging", {}).get("level", defaults.log_level),
    )


def load_settings(path: Path | None = None) -> Settings:
    source = path or config_path()
    if not source.exists():
        return Settings()
    doc = _read_config(source)
    _validate(doc, source)
    return settings_from_dict(doc)
