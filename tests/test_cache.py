"""TTL cache and command result cache."""

from __future__ import annotations

from conftest import FakeClock
from terminal_assistant.cache.ttl_cache import ResultCache, TTLCache
from terminal_assistant.graph.state import CommandResult


def test_ttl_cache_expires_entries():
    clock = FakeClock()
    cache = TTLCache(10, clock=clock)
    cache.set("k", "v")

    clock.advance(10)
    assert cache.get("k") == "v"
    clock.advance(0.5)
    assert cache.get("k") is None
    assert len(cache) == 0


def test_result_cache_stores_only_successes():
    cache = ResultCache(300, clock=FakeClock())
    ok = CommandResult(command="uptime", stdout="up", output="up", exit_code=0)
    failed = CommandResult(command="lsblk", stderr="not found", exit_code=127, error="not found")
    skipped = CommandResult(command="rm -rf /", skipped=True, error="blocked")

    assert cache.put(ok, "Linux", "uptime")
    assert not cache.put(failed, "Linux", "uptime")
    assert not cache.put(skipped, "Linux", "uptime")
    assert len(cache) == 1


def test_result_cache_hit_is_flagged_copy():
    cache = ResultCache(300, clock=FakeClock())
    stored = CommandResult(command="uptime", stdout="up", output="up", exit_code=0)
    cache.put(stored, "Linux", "Uptime")

    hit = cache.get(" uptime ", "linux", "uptime")
    assert hit is not None
    assert hit.from_cache
    assert hit.stdout == "up"
    assert not stored.from_cache


def test_result_cache_key_includes_os_and_intent():
    cache = ResultCache(300, clock=FakeClock())
    cache.put(CommandResult(command="uptime", exit_code=0), "Linux", "uptime")

    assert cache.get("uptime", "Darwin", "uptime") is None
    assert cache.get("uptime", "Linux", "load") is None
