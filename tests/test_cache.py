from __future__ import annotations

from batteryfuse.core.cache import FusionCache, merge_battery_levels
from batteryfuse.core.model import Device, LookupResult


def test_merge_keeps_higher_value_in_either_order() -> None:
    first: dict[str, int] = {}
    merge_battery_levels(first, {"k": 40})
    merge_battery_levels(first, {"k": 85})

    second: dict[str, int] = {}
    merge_battery_levels(second, {"k": 85})
    merge_battery_levels(second, {"k": 40})

    assert first == second == {"k": 85}


def test_merge_reports_inserted_keys_and_skips_empty() -> None:
    target = {"a": 10}
    inserted = merge_battery_levels(target, {"a": 50, "b": 20, "": 99})
    assert inserted == ["b"]
    assert target == {"a": 50, "b": 20}


def test_swap_carries_over_unread_keys() -> None:
    cache = FusionCache()
    cache.swap({"aabb": 50}, {"buds": 50})
    cache.swap({"ccdd": 70}, {"buds": 30})

    snapshot = cache.snapshot()
    assert snapshot.by_address == {"aabb": 50, "ccdd": 70}
    assert snapshot.by_name == {"buds": 30}


def test_level_lookup_prefers_address() -> None:
    cache = FusionCache()
    cache.swap({"aabbccddeeff": 90}, {"mybuds": 20})

    assert cache.level_for("My Buds", "AA:BB:CC:DD:EE:FF") == 90
    assert cache.level_for("My Buds", "11:22:33:44:55:66") == 20
    assert cache.level_for("My Buds", "unknown") == 20
    assert cache.level_for("Other", None) is None
    assert cache.level_for_device(Device(name="My Buds")) == 20


def test_live_results_only_raise_levels() -> None:
    cache = FusionCache()
    cache.swap({"aabb": 60}, {})

    assert not cache.merge_live_results([LookupResult(platform_id="X", level=40, address_key="aabb")])
    assert cache.merge_live_results([LookupResult(platform_id="X", level=75, address_key="aabb", name_key="buds")])
    snapshot = cache.snapshot()
    assert snapshot.by_address["aabb"] == 75
    assert snapshot.by_name["buds"] == 75


def test_name_levels_report_new_keys() -> None:
    cache = FusionCache()
    cache.swap({}, {"buds": 50})
    assert cache.merge_name_levels({"buds": 60, "speaker": 120}) == ["speaker"]
    assert cache.snapshot().by_name == {"buds": 60, "speaker": 100}
