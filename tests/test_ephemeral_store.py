from loop_builder.ephemeral_store import Throttle, TTLStore


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def test_entries_expire():
    clock = FakeClock()
    store = TTLStore(default_ttl_s=10, clock=clock)
    store.set("a", 1)
    store.set("b", 2, ttl_s=30)
    assert store.get("a") == 1
    clock.now += 11
    assert store.get("a") is None
    assert store.get("b") == 2
    assert len(store) == 1


def test_delete():
    store = TTLStore()
    store.set("a", 1)
    store.delete("a")
    store.delete("missing")
    assert store.get("a", "gone") == "gone"


def test_reserve_slot_spaces_calls():
    clock = FakeClock()
    store = TTLStore(clock=clock)
    assert store.reserve_slot("k", 0.5) == 0.0
    assert store.reserve_slot("k", 0.5) == 0.5
    assert store.reserve_slot("k", 0.5) == 1.0
    clock.now += 5
    assert store.reserve_slot("k", 0.5) == 0.0


def test_throttle_sleeps_between_calls():
    clock = FakeClock()
    slept = []
    throttle = Throttle(TTLStore(clock=clock), "graphhopper", 0.5, sleep=slept.append)
    throttle.wait()
    throttle.wait()
    assert slept == [0.5]


def test_throttle_disabled():
    slept = []
    throttle = Throttle(TTLStore(), "x", 0.0, sleep=slept.append)
    assert throttle.wait() == 0.0
    assert slept == []
