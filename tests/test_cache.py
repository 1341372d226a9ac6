import pytest

from cache import CacheKind, MemoryCacheBackend, UpdateBroker, UpdateEvent, UserCache


class ManualClock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now


class BrokenBackend:
    def get(self, key):
        raise ConnectionError("cache down")

    def set(self, key, value, ttl):
        raise ConnectionError("cache down")

    def delete_where(self, predicate):
        raise ConnectionError("cache down")

    def sweep_expired(self):
        raise ConnectionError("cache down")

    def __len__(self):
        raise ConnectionError("cache down")


TTLS = {
    CacheKind.dashboard_stats: 300,
    CacheKind.category_breakdown: 300,
    CacheKind.ai_insights: 3600,
    CacheKind.transaction_history: 600,
}


def test_entries_expire_after_their_ttl() -> None:
    clock = ManualClock()
    cache = UserCache(MemoryCacheBackend(clock), TTLS)
    cache.set(CacheKind.dashboard_stats, 1, {"total": 5})
    cache.set(CacheKind.ai_insights, 1, ["insight"])

    clock.now += 299
    assert cache.get(CacheKind.dashboard_stats, 1) == {"total": 5}

    clock.now += 1
    assert cache.get(CacheKind.dashboard_stats, 1) is None
    assert cache.get(CacheKind.ai_insights, 1) == ["insight"]

    clock.now += 3600
    assert cache.sweep_expired() == 1
    assert len(cache.backend) == 0


def test_cached_values_are_copies() -> None:
    cache = UserCache(MemoryCacheBackend(), TTLS)
    value = {"rows": [1, 2]}
    cache.set(CacheKind.dashboard_stats, 1, value)

    value["rows"].append(3)
    fetched = cache.get(CacheKind.dashboard_stats, 1)
    fetched["rows"].append(4)

    assert cache.get(CacheKind.dashboard_stats, 1) == {"rows": [1, 2]}


def test_get_or_compute_only_computes_on_miss() -> None:
    cache = UserCache(MemoryCacheBackend(), TTLS)
    calls = []

    def compute():
        calls.append(1)
        return {"value": len(calls)}

    first = cache.get_or_compute(CacheKind.category_breakdown, 7, compute, suffix="a")
    second = cache.get_or_compute(CacheKind.category_breakdown, 7, compute, suffix="a")
    other = cache.get_or_compute(CacheKind.category_breakdown, 7, compute, suffix="b")

    assert first == second == {"value": 1}
    assert other == {"value": 2}
    assert len(calls) == 2


def test_invalidation_is_scoped_to_user_and_kind() -> None:
    cache = UserCache(MemoryCacheBackend(), TTLS)
    for kind in CacheKind:
        cache.set(kind, 1, "mine")
        cache.set(kind, 2, "theirs")

    cache.invalidate(CacheKind.ai_insights, 1)
    assert cache.get(CacheKind.ai_insights, 1) is None
    assert cache.get(CacheKind.dashboard_stats, 1) == "mine"

    cache.invalidate_user(1)
    assert all(cache.get(kind, 1) is None for kind in CacheKind)
    assert all(cache.get(kind, 2) == "theirs" for kind in CacheKind)


def test_backend_failures_fall_through() -> None:
    cache = UserCache(BrokenBackend(), TTLS)

    assert cache.get(CacheKind.dashboard_stats, 1) is None
    assert cache.get_or_compute(CacheKind.dashboard_stats, 1, lambda: 42) == 42
    cache.invalidate_user(1)
    cache.invalidate(CacheKind.dashboard_stats, 1)
    assert cache.sweep_expired() == 0
    assert cache.health()["status"] == "error"


def test_health_reports_entry_count() -> None:
    cache = UserCache(MemoryCacheBackend(), TTLS)
    cache.set(CacheKind.dashboard_stats, 1, {})

    assert cache.health() == {"status": "healthy", "entries": 1}


def test_broker_delivery_is_best_effort() -> None:
    broker = UpdateBroker()
    received = []

    def failing(user_id, event, payload):
        raise RuntimeError("subscriber blew up")

    broker.subscribe(failing)
    unsubscribe = broker.subscribe(
        lambda user_id, event, payload: received.append((user_id, event, payload))
    )

    delivered = broker.publish(3, UpdateEvent.new_transaction, {"id": 9})
    assert delivered == 1
    assert received == [(3, UpdateEvent.new_transaction, {"id": 9})]

    unsubscribe()
    assert broker.publish(3, UpdateEvent.transaction_deleted, {"id": 9}) == 0
    assert len(received) == 1


@pytest.mark.parametrize("kind", list(CacheKind))
def test_default_ttls_follow_settings(kind: CacheKind) -> None:
    cache = UserCache(MemoryCacheBackend())
    expected = {
        CacheKind.dashboard_stats: 300,
        CacheKind.category_breakdown: 300,
        CacheKind.ai_insights: 3600,
        CacheKind.transaction_history: 600,
    }
    assert cache.ttls[kind] == expected[kind]
