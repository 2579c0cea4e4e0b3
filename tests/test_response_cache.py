import pytest

from response_cache import TTLCache, cache_key


class FakeClock:
    def __init__(self):
        self.t = 0.0

    def __call__(self):
        return self.t


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def cache(clock):
    return TTLCache(ttl_seconds=10, clock=clock)


def test_entries_expire_at_ttl(cache, clock):
    cache.set("k", {"tasks": []})
    clock.t = 9.9
    assert cache.get("k") == {"tasks": []}
    clock.t = 10
    assert cache.get("k") is None
    assert cache.get("k", "miss") == "miss"


def test_get_or_compute_calls_once_per_ttl(cache, clock):
    calls = []

    def compute():
        calls.append(clock.t)
        return len(calls)

    assert cache.get_or_compute("k", compute) == 1
    clock.t = 5
    assert cache.get_or_compute("k", compute) == 1
    clock.t = 11
    assert cache.get_or_compute("k", compute) == 2
    assert calls == [0.0, 11]


def test_cached_none_is_a_hit(cache):
    calls = []
    cache.get_or_compute("k", lambda: calls.append(1))
    cache.get_or_compute("k", lambda: calls.append(1))
    assert calls == [1]


def test_status(cache, clock):
    assert cache.status() == {"cached": False, "entries": 0, "oldest_age_seconds": 0}
    cache.set("a", 1)
    clock.t = 4
    cache.set("b", 2)
    clock.t = 6
    assert cache.status() == {"cached": True, "entries": 2, "oldest_age_seconds": 6.0}
    clock.t = 12
    assert cache.status() == {"cached": True, "entries": 1, "oldest_age_seconds": 8.0}


def test_cache_key_ignores_param_order():
    assert cache_key("/list/1/task", {"page": 0, "subtasks": "true"}) == cache_key("/list/1/task", {"subtasks": "true", "page": 0})
    assert cache_key("/task/1/time_in_status") == "/task/1/time_in_status?{}"

