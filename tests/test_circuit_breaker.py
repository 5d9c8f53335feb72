"""
Tests du CircuitBreaker : ouverture, reset, half-open, isolation.
"""
from orchestrator.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState


def breaker_for(clock, **overrides):
    config = CircuitBreakerConfig(**{
        "failure_threshold": 3,
        "failure_window_ms": 10_000,
        "reset_timeout_ms": 5_000,
        "success_threshold": 2,
        **overrides,
    })
    return CircuitBreaker(config, clock=clock.ms)


def test_closed_circuit_allows(clock):
    breaker = breaker_for(clock)

    assert breaker.allow("slack")
    assert breaker.state("slack") == CircuitState.CLOSED
    assert breaker.wait_time("slack") == 0


def test_opens_after_threshold_inside_window(clock):
    breaker = breaker_for(clock)
    for _ in range(3):
        breaker.record_failure("slack")

    assert breaker.state("slack") == CircuitState.OPEN
    assert not breaker.allow("slack")
    assert breaker.wait_time("slack") == 5_000

    stats = breaker.get_stats("slack")
    assert stats.times_opened == 1
    assert stats.rejected_requests == 1


def test_failures_outside_window_do_not_open(clock):
    """Test only failures within the sliding window count"""
    breaker = breaker_for(clock)
    breaker.record_failure("slack")
    breaker.record_failure("slack")
    clock.advance(10_000)
    breaker.record_failure("slack")

    assert breaker.state("slack") == CircuitState.CLOSED


def test_half_open_after_reset_timeout(clock):
    breaker = breaker_for(clock)
    for _ in range(3):
        breaker.record_failure("slack")

    clock.advance(4_999)
    assert not breaker.allow("slack")
    clock.advance(1)
    assert breaker.allow("slack")
    assert breaker.state("slack") == CircuitState.HALF_OPEN


def test_half_open_closes_after_successes(clock):
    breaker = breaker_for(clock)
    for _ in range(3):
        breaker.record_failure("slack")
    clock.advance(5_000)
    breaker.allow("slack")

    breaker.record_success("slack")
    assert breaker.state("slack") == CircuitState.HALF_OPEN
    breaker.record_success("slack")

    assert breaker.state("slack") == CircuitState.CLOSED
    stats = breaker.get_stats("slack")
    assert stats.times_closed == 1
    assert stats.consecutive_failures == 0


def test_half_open_failure_reopens(clock):
    breaker = breaker_for(clock)
    for _ in range(3):
        breaker.record_failure("slack")
    clock.advance(5_000)
    breaker.allow("slack")

    breaker.record_failure("slack")

    assert breaker.state("slack") == CircuitState.OPEN
    assert breaker.wait_time("slack") == 5_000
    assert breaker.get_stats("slack").times_opened == 2


def test_platforms_are_isolated(clock):
    breaker = breaker_for(clock)
    for _ in range(3):
        breaker.record_failure("Slack")

    assert not breaker.allow("slack")
    assert breaker.allow("notion")
    assert set(breaker.circuits) == {"slack", "notion"}


def test_manual_reset_closes(clock):
    breaker = breaker_for(clock)
    for _ in range(3):
        breaker.record_failure("slack")

    breaker.reset("slack")

    assert breaker.allow("slack")
    assert breaker.state("slack") == CircuitState.CLOSED
