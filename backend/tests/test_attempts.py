from datetime import datetime, timezone

import pytest

from tirestore.attempts import LOGIN_FAILED, MALICIOUS_SCRIPT, RATE_LIMIT, AttemptLedger
from tirestore.request_info import ClientInfo


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def client(ip: str = "10.0.0.1", user_agent: str = "Mozilla/5.0") -> ClientInfo:
    return ClientInfo(ip=ip, user_agent=user_agent, device_info="{}")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger(clock: FakeClock) -> AttemptLedger:
    return AttemptLedger(window_seconds=3600, warning_threshold=3, block_threshold=6, clock=clock)


def test_failures_warn_from_third_and_block_on_sixth(ledger: AttemptLedger):
    outcomes = [ledger.record_failure("a@x.com", client()) for _ in range(6)]

    assert [outcome.failed_count for outcome in outcomes] == [1, 2, 3, 4, 5, 6]
    assert [outcome.is_warning for outcome in outcomes] == [False, False, True, True, True, False]
    assert [outcome.is_blocked for outcome in outcomes] == [False] * 5 + [True]
    assert outcomes[3].attempts_remaining == 2
    assert outcomes[4].attempts_remaining == 1
    assert outcomes[5].attempts_remaining == 0

    record = ledger.blocking_record("a@x.com", "10.0.0.1")
    assert record is not None
    assert record.block_reason == "Too many failed login attempts (6). Potential brute force attack detected."
    assert ledger.check_blocked("a@x.com", "10.0.0.1") is True


def test_block_expires_with_the_window(ledger: AttemptLedger, clock: FakeClock):
    for _ in range(6):
        ledger.record_failure("a@x.com", client())
    blocked_at = clock.now

    clock.advance(3599)
    assert ledger.check_blocked("a@x.com", "10.0.0.1") is True
    assert ledger.blocked_until("a@x.com", "10.0.0.1") == datetime.fromtimestamp(blocked_at + 3600, tz=timezone.utc)

    clock.advance(1)
    assert ledger.check_blocked("a@x.com", "10.0.0.1") is False
    assert len(ledger) == 0


def test_failures_older_than_window_do_not_count(ledger: AttemptLedger, clock: FakeClock):
    for _ in range(5):
        ledger.record_failure("a@x.com", client())
    clock.advance(3601)

    outcome = ledger.record_failure("a@x.com", client())

    assert outcome.failed_count == 1
    assert outcome.is_blocked is False


def test_fresh_failures_after_window_only_reach_warning(ledger: AttemptLedger, clock: FakeClock):
    for _ in range(5):
        ledger.record_failure("a@x.com", client())
    clock.advance(3601)

    outcomes = [ledger.record_failure("a@x.com", client()) for _ in range(3)]

    assert outcomes[-1].failed_count == 3
    assert outcomes[-1].is_warning is True
    assert outcomes[-1].is_blocked is False
    assert ledger.check_blocked("a@x.com", "10.0.0.1") is False


def test_pairs_are_tracked_independently(ledger: AttemptLedger):
    for _ in range(6):
        ledger.record_failure("a@x.com", client("10.0.0.1"))

    assert ledger.check_blocked("a@x.com", "10.0.0.2") is False
    assert ledger.check_blocked("b@x.com", "10.0.0.1") is False
    assert ledger.address_has_blocks("10.0.0.1") is True
    assert ledger.address_has_blocks("10.0.0.2") is False


def test_ipv6_addresses_and_colons_in_identity_are_kept_apart(ledger: AttemptLedger):
    for _ in range(6):
        ledger.record_failure("user:a@x.com", client("2001:db8::1"))

    assert ledger.check_blocked("user:a@x.com", "2001:db8::1") is True
    assert ledger.check_blocked("user", "a@x.com:2001:db8::1") is False


def test_success_clears_exact_pair_only(ledger: AttemptLedger):
    ledger.record_failure("a@x.com", client("10.0.0.1"))
    ledger.record_failure("a@x.com", client("10.0.0.2"))

    ledger.record_success("a@x.com", client("10.0.0.1"))

    assert ledger.status("a@x.com", "10.0.0.1").failed_attempts == 0
    assert ledger.status("a@x.com", "10.0.0.2").failed_attempts == 1


def test_malicious_record_blocks_immediately(ledger: AttemptLedger):
    ledger.record_malicious("a@x.com", client(), suspicion_score=4)

    record = ledger.blocking_record("a@x.com", "10.0.0.1")
    assert record is not None
    assert record.kind == MALICIOUS_SCRIPT
    assert record.block_reason == "Malicious script/bot activity detected (suspicion score: 4)"
    assert ledger.status("a@x.com", "10.0.0.1").failed_attempts == 0


def test_rate_limited_record_does_not_block_or_count_as_failure(ledger: AttemptLedger):
    ledger.record_rate_limited("a@x.com", client())

    status = ledger.status("a@x.com", "10.0.0.1")
    assert status.is_blocked is False
    assert status.failed_attempts == 0
    assert status.recent_attempts == 1
    assert ledger.list_blocks()[0].last_attempt_kind == RATE_LIMIT


def test_missing_identity_is_a_no_op(ledger: AttemptLedger):
    outcome = ledger.record_failure(None, client())
    ledger.record_failure("", client())
    ledger.record_malicious(None, client(), suspicion_score=9)
    ledger.record_rate_limited("", client())

    assert outcome.failed_count == 0
    assert outcome.attempts_remaining == 6
    assert ledger.check_blocked(None, "10.0.0.1") is False
    assert ledger.warning(None, "10.0.0.1") is None
    assert len(ledger) == 0


def test_warning_message_between_thresholds(ledger: AttemptLedger):
    for _ in range(2):
        ledger.record_failure("a@x.com", client())
    assert ledger.warning("a@x.com", "10.0.0.1") is None

    ledger.record_failure("a@x.com", client())
    warning = ledger.warning("a@x.com", "10.0.0.1")
    assert warning is not None
    assert warning.attempts_remaining == 3
    assert warning.message == (
        "Warning: 3 failed login attempts detected. 3 attempts remaining before account is temporarily blocked."
    )

    for _ in range(3):
        ledger.record_failure("a@x.com", client())
    assert ledger.warning("a@x.com", "10.0.0.1") is None


def test_status_reports_counts_and_next_allowed_time(ledger: AttemptLedger, clock: FakeClock):
    for _ in range(6):
        ledger.record_failure("a@x.com", client())

    status = ledger.status("a@x.com", "10.0.0.1")

    assert status.failed_attempts == 6
    assert status.is_blocked is True
    assert status.attempts_remaining == 0
    assert status.recent_attempts == 6
    assert status.next_allowed_time == datetime.fromtimestamp(clock.now + 3600, tz=timezone.utc)


def test_clear_modes(ledger: AttemptLedger):
    ledger.record_failure("a@x.com", client("10.0.0.1"))
    ledger.record_failure("a@x.com", client("10.0.0.2"))
    ledger.record_failure("b@x.com", client("10.0.0.1"))
    ledger.record_failure("c@x.com", client("10.0.0.3"))

    specific = ledger.clear(identity="a@x.com", source_address="10.0.0.9")
    assert (specific.cleared, specific.mode) == (0, "specific")

    by_identity = ledger.clear(identity="a@x.com")
    assert (by_identity.cleared, by_identity.mode) == (2, "identity")

    by_address = ledger.clear(source_address="10.0.0.1")
    assert (by_address.cleared, by_address.mode) == (1, "address")

    everything = ledger.clear()
    assert (everything.cleared, everything.mode) == (1, "all")
    assert len(ledger) == 0


def test_list_blocks_sorted_by_most_recent_attempt(ledger: AttemptLedger, clock: FakeClock):
    ledger.record_failure("old@x.com", client("10.0.0.1"))
    clock.advance(10)
    ledger.record_malicious("new@x.com", client("10.0.0.2", user_agent="curl/8"), suspicion_score=5)

    blocks = ledger.list_blocks()

    assert [block.identity for block in blocks] == ["new@x.com", "old@x.com"]
    assert blocks[0].is_blocked is True
    assert blocks[0].user_agent == "curl/8"
    assert blocks[1].last_attempt_kind == LOGIN_FAILED
    assert blocks[1].failed_attempts == 1
    assert blocks[1].total_attempts == 1


def test_sweep_drops_fully_expired_buckets(ledger: AttemptLedger, clock: FakeClock):
    ledger.record_failure("a@x.com", client("10.0.0.1"))
    clock.advance(3000)
    ledger.record_failure("b@x.com", client("10.0.0.1"))
    clock.advance(700)

    assert ledger.sweep() == 1
    assert len(ledger) == 1
