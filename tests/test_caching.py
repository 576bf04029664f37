import pytest

from caching import DeduplicationGuard, ResponseCache, TTLMap, build_cache_key
from caching.fingerprint import fingerprint


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


def _conversation(*contents):
    return [{"role": "user", "content": c} for c in contents]


# --- TTLMap ---


def test_ttl_map_expires_entries(clock):
    entries = TTLMap(ttl_seconds=10, max_keys=5, clock=clock)
    entries.set("a", 1)
    clock.advance(9.9)
    assert entries.get("a") == 1
    clock.advance(0.2)
    assert entries.get("a") is None
    assert "a" not in entries


def test_ttl_map_set_resets_expiry(clock):
    entries = TTLMap(ttl_seconds=10, max_keys=5, clock=clock)
    entries.set("a", 1)
    clock.advance(8)
    entries.set("a", 2)
    clock.advance(8)
    assert entries.get("a") == 2


def test_ttl_map_evicts_oldest_over_limit(clock):
    entries = TTLMap(ttl_seconds=60, max_keys=2, clock=clock)
    entries.set("a", 1)
    entries.set("b", 2)
    entries.set("c", 3)
    assert "a" not in entries
    assert entries.peek("b") == 2
    assert entries.peek("c") == 3
    assert len(entries) == 2


def test_ttl_map_prefers_expired_over_live_on_eviction(clock):
    entries = TTLMap(ttl_seconds=10, max_keys=2, clock=clock)
    entries.set("old", 1)
    clock.advance(5)
    entries.set("b", 2)
    clock.advance(6)  # "old" now expired
    entries.set("c", 3)
    assert entries.peek("b") == 2
    assert entries.peek("c") == 3


def test_ttl_map_counts_hits_and_misses(clock):
    entries = TTLMap(ttl_seconds=10, max_keys=5, clock=clock)
    entries.set("a", 1)
    entries.get("a")
    entries.get("missing")
    entries.peek("a")
    assert entries.stats() == {"keys": 1, "hits": 1, "misses": 1}


# --- Response cache ---


def test_fingerprint_is_stable_across_key_order():
    assert fingerprint({"role": "user", "content": "x"}) == fingerprint(
        {"content": "x", "role": "user"}
    )
    assert len(fingerprint("hello")) == 32


def test_cache_key_uses_only_last_three_messages():
    base = _conversation("one", "two", "three", "four")
    other_prefix = _conversation("zzz", "two", "three", "four")
    assert build_cache_key("m", base) == build_cache_key("m", other_prefix)
    assert build_cache_key("m", base) != build_cache_key("m", _conversation("two", "three", "five"))
    assert build_cache_key("m1", base) != build_cache_key("m2", base)


def test_writer_accumulates_fragments_until_complete(clock):
    cache = ResponseCache(ttl_seconds=300, max_entries=10, clock=clock)
    messages = _conversation("hi")
    writer = cache.writer("m", messages)
    writer.append("Hello")
    writer.append(" there")

    assert cache.get("m", messages) is None

    writer.complete()
    assert cache.get("m", messages) == "Hello there"
    assert cache.get("other", messages) is None


def test_pending_entry_reads_as_miss(clock):
    cache = ResponseCache(ttl_seconds=300, max_entries=10, clock=clock)
    messages = _conversation("hi")
    cache.writer("m", messages).append("partial")

    assert cache.get("m", messages) is None
    assert cache.stats() == {"keys": 1, "hits": 0, "misses": 1}


def test_concurrent_writer_does_not_interleave(clock):
    cache = ResponseCache(ttl_seconds=300, max_entries=10, clock=clock)
    messages = _conversation("hi")
    first = cache.writer("m", messages)
    second = cache.writer("m", messages)

    first.append("One")
    second.append("Two")
    first.append(" done")
    second.append(" also")
    second.complete()
    first.complete()

    assert first.owns_entry is False
    assert cache.get("m", messages) == "One done"


def test_losing_writer_never_claims_after_owner_discards(clock):
    cache = ResponseCache(ttl_seconds=300, max_entries=10, clock=clock)
    messages = _conversation("hi")
    owner = cache.writer("m", messages)
    late = cache.writer("m", messages)

    owner.append("a")
    late.append("b")
    owner.discard()
    late.append("c")
    late.complete()

    assert cache.get("m", messages) is None
    assert cache.stats()["keys"] == 0


def test_discard_drops_pending_answer(clock):
    cache = ResponseCache(ttl_seconds=300, max_entries=10, clock=clock)
    messages = _conversation("hi")
    writer = cache.writer("m", messages)
    writer.append("partial")
    writer.discard()

    assert cache.stats()["keys"] == 0


def test_discard_after_complete_keeps_answer(clock):
    cache = ResponseCache(ttl_seconds=300, max_entries=10, clock=clock)
    messages = _conversation("hi")
    writer = cache.writer("m", messages)
    writer.append("full")
    writer.complete()
    writer.discard()

    assert cache.get("m", messages) == "full"


def test_cache_entry_expires_after_ttl(clock):
    cache = ResponseCache(ttl_seconds=300, max_entries=10, clock=clock)
    messages = _conversation("hi")
    cache.store("m", messages, "Hello")
    clock.advance(301)
    assert cache.get("m", messages) is None


def test_cache_ignores_empty_fragments(clock):
    cache = ResponseCache(ttl_seconds=300, max_entries=10, clock=clock)
    messages = _conversation("hi")
    writer = cache.writer("m", messages)
    writer.append("")
    writer.complete()
    assert cache.get("m", messages) is None
    assert cache.stats()["keys"] == 0


def test_cache_stats_report_hits_and_misses(clock):
    cache = ResponseCache(ttl_seconds=300, max_entries=10, clock=clock)
    messages = _conversation("hi")
    cache.store("m", messages, "x")
    cache.get("m", messages)
    cache.get("m", _conversation("bye"))
    assert cache.stats() == {"keys": 1, "hits": 1, "misses": 1}



# --- Deduplication ---


def test_dedup_rejects_repeat_within_window(clock):
    guard = DeduplicationGuard(window_seconds=5, clock=clock)
    assert guard.check_and_mark("u1", "hello") is True
    clock.advance(2)
    assert guard.check_and_mark("u1", "hello") is False


def test_dedup_accepts_repeat_after_window(clock):
    guard = DeduplicationGuard(window_seconds=5, clock=clock)
    assert guard.check_and_mark("u1", "hello") is True
    clock.advance(5.1)
    assert guard.check_and_mark("u1", "hello") is True


def test_dedup_distinguishes_callers_and_prompts(clock):
    guard = DeduplicationGuard(window_seconds=5, clock=clock)
    assert guard.check_and_mark("u1", "hello") is True
    assert guard.check_and_mark("u2", "hello") is True
    assert guard.check_and_mark("u1", "hello again") is True
    assert guard.stats() == {"keys": 3}
