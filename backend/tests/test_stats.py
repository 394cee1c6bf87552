from tirestore.stats import BlockedAddress, StatsRecorder


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_hits_and_successes_are_counted():
    stats = StatsRecorder(clock=FakeClock())

    stats.track_success("10.0.0.1")
    stats.track_success("10.0.0.2")
    stats.track_hit("auth", "10.0.0.1")
    stats.track_hit("payment", "10.0.0.3")

    snapshot = stats.snapshot()
    assert snapshot.total_requests == 4
    assert snapshot.blocked_requests == 2
    assert snapshot.rate_limit_hits == {"general": 0, "auth": 1, "payment": 1, "upload": 0}
    assert snapshot.last_24_hours.requests == 4
    assert snapshot.last_24_hours.blocked == 2
    assert snapshot.last_24_hours.unique_address_count == 3


def test_top_blocked_addresses_ordered_by_count_then_first_seen():
    stats = StatsRecorder(clock=FakeClock())
    for address, hits in (("a", 1), ("b", 3), ("c", 1), ("d", 2)):
        for _ in range(hits):
            stats.track_hit("general", address)

    top = stats.snapshot().top_blocked_addresses

    assert top == [
        BlockedAddress("b", 3),
        BlockedAddress("d", 2),
        BlockedAddress("a", 1),
        BlockedAddress("c", 1),
    ]


def test_top_blocked_addresses_capped_at_ten():
    stats = StatsRecorder(clock=FakeClock())
    for index in range(15):
        stats.track_hit("general", f"10.0.0.{index}")

    assert len(stats.snapshot().top_blocked_addresses) == 10


def test_rolling_window_resets_after_24_hours_but_totals_do_not():
    clock = FakeClock()
    stats = StatsRecorder(window_hours=24, clock=clock)
    stats.track_hit("auth", "10.0.0.1")
    stats.track_success("10.0.0.2")

    clock.advance(24 * 60 * 60)
    stats.track_success("10.0.0.3")

    snapshot = stats.snapshot()
    assert snapshot.total_requests == 3
    assert snapshot.blocked_requests == 1
    assert snapshot.last_24_hours.requests == 1
    assert snapshot.last_24_hours.blocked == 0
    assert snapshot.last_24_hours.unique_address_count == 1


def test_reset_zeroes_everything():
    stats = StatsRecorder(clock=FakeClock())
    stats.track_hit("upload", "10.0.0.1")

    stats.reset()

    snapshot = stats.snapshot()
    assert snapshot.total_requests == 0
    assert snapshot.blocked_requests == 0
    assert snapshot.top_blocked_addresses == []
    assert snapshot.rate_limit_hits["upload"] == 0
    assert snapshot.last_24_hours.requests == 0
