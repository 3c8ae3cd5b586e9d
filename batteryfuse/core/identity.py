"""Identity key normalization for addresses and display names."""

from __future__ import annotations

import re

from batteryfuse.core.model import Device, IdentityKey

_ADDRESS_SEPARATORS_RE = re.compile(r"[:\- ]")
_NON_ALNUM_RE = re.compile(r"[^0-9a-z]+")


def normalize_address(value: str | None) -> str:
    if not value:
        return ""
    return _ADDRESS_SEPARATORS_RE.sub("", value.lower())


def normalize_name(value: str | None) -> str:
    if not value:
        return ""
    return _NON_ALNUM_RE.sub("", value.lower())


def _usable_address(address: str | None) -> str:
    trimmed = (address or "").strip()
    if trimmed.lower() == "unknown":
        return ""
    return normalize_address(trimmed)


def identity_key(name: str | None, address: str | None = None) -> IdentityKey:
    return IdentityKey(address=_usable_address(address), name=normalize_name((name or "").strip()))


def device_identity(device: Device) -> IdentityKey:
    return identity_key(device.name, device.address)


def missing_battery_key(name: str | None, address: str | None) -> str:
    key = identity_key(name, address)
    if key.is_empty:
        return "unknown"
    return f"{key.name}#{key.address}"
