"""Field map loading and validation for YAML-based battery field lists."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from batteryfuse.core.errors import FieldMapLoadError, FieldMapValidationError
from batteryfuse.core.model import FieldMap, FieldRule, NestedBatteryMap
from batteryfuse.core.yaml_loader import load_yaml_text

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoadedFieldMaps:
    field_maps: dict[str, FieldMap]
    warnings: tuple[str, ...]

    def get(self, field_map_id: str) -> FieldMap:
        try:
            return self.field_maps[field_map_id]
        except KeyError:
            raise FieldMapLoadError(f"No field map named '{field_map_id}' is available") from None


@lru_cache(maxsize=1)
def _load_schema_validator() -> Any:
    schema_text = resources.files("batteryfuse.schemas").joinpath("field_map.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _field_map_dirs() -> tuple[Path, Path]:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_config / "batteryfuse/field_maps", xdg_data / "batteryfuse/field_maps"


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise FieldMapLoadError(f"Could not read field map file {path}: {exc}") from exc

    try:
        loaded = load_yaml_text(content)
    except yaml.YAMLError as exc:
        raise FieldMapValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise FieldMapValidationError(f"Field map file {path} must contain a mapping at root")
    return loaded


def _build_field_map(doc: dict[str, Any], source: Path | Traversable) -> FieldMap:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise FieldMapValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    seen: set[str] = set()
    rules: list[FieldRule] = []
    for entry in doc["battery_fields"]:
        key = entry["key"]
        if key in seen:
            raise FieldMapValidationError(f"{doc['id']}.battery_fields lists '{key}' more than once")
        seen.add(key)
        rules.append(FieldRule(key=key, scale=entry.get("scale", "auto")))

    return FieldMap(
        id=doc["id"],
        battery_fields=tuple(rules),
        reduce=doc.get("reduce", "max"),
        battery_key_contains=doc.get("battery_key_contains"),
        nested_battery_maps=tuple(
            NestedBatteryMap(list_key=item["list"], map_key=item["map"])
            for item in doc.get("nested_battery_maps", [])
        ),
        address_fields=tuple(doc.get("address_fields", [])),
        name_fields=tuple(doc.get("name_fields", [])),
    )


def _iter_packaged_field_map_paths() -> list[Traversable]:
    root = resources.files("batteryfuse.field_maps")
    return [item for item in root.iterdir() if item.name.endswith((".yml", ".yaml"))]


def _iter_user_field_map_paths() -> list[Path]:
    paths: list[Path] = []
    for directory in _field_map_dirs():
        if not directory.exists() or not directory.is_dir():
            continue
        paths.extend(sorted(p for p in directory.iterdir() if p.suffix in {".yml", ".yaml"}))
    return paths


def load_field_maps() -> LoadedFieldMaps:
    field_maps: dict[str, FieldMap] = {}
    warnings: list[str] = []

    for path in sorted(_iter_packaged_field_map_paths(), key=lambda p: p.name):
        field_map = _build_field_map(_read_yaml(path), path)
        field_maps[field_map.id] = field_map

    for path in _iter_user_field_map_paths():
        field_map = _build_field_map(_read_yaml(path), path)
        if field_map.id in field_maps:
            warning = f"User field map '{field_map.id}' overrides packaged field map"
            LOGGER.warning(warning)
            warnings.append(warning)
        field_maps[field_map.id] = field_map

    return LoadedFieldMaps(field_maps=field_maps, warnings=tuple(warnings))
