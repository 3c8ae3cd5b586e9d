"""Device classification by display name."""

from __future__ import annotations

from batteryfuse.core.model import DeviceClass

_HEADPHONE_TOKENS = ("headphone", "headset", "buds", "earbuds")
_SPEAKER_TOKENS = ("speaker", "boombox")


def classify_device(name: str) -> DeviceClass:
    lower_name = name.lower()
    if "airpods" in lower_name:
        if "max" in lower_name:
            return DeviceClass.AIRPODS_MAX
        if "pro" in lower_name:
            return DeviceClass.AIRPODS_PRO
        return DeviceClass.AIRPODS
    if "beats" in lower_name:
        return DeviceClass.BEATS
    if any(token in lower_name for token in _SPEAKER_TOKENS):
        return DeviceClass.SPEAKER
    if any(token in lower_name for token in _HEADPHONE_TOKENS):
        return DeviceClass.HEADPHONES
    return DeviceClass.GENERIC
