from datetime import timedelta

from ecopoints.utils.circuit_breaker import CircuitBreaker


def test_circuit_opens_and_half_open_cycle():
    cb = CircuitBreaker()
    gateway = "paypal"
    # Failure threshold from config is 5; exceed it
    for _ in range(6):
        cb.record_failure(gateway)
    allowed, reason = cb.allow_call(gateway)
    assert allowed is False and reason == "circuit_open"
    st = cb._states[gateway]
    assert st.state == "OPEN"
    assert st.opened_at is not None

    # Cooldown elapsed -> probes allowed
    st.opened_at = st.opened_at - timedelta(seconds=301)
    allowed, reason = cb.allow_call(gateway)
    assert allowed is True and reason is None
    assert cb._states[gateway].state == "HALF_OPEN"

    cb.record_success(gateway)
    assert cb._states[gateway].state == "CLOSED"
    assert cb._states[gateway].failures == 0


def test_half_open_failure_reopens():
    cb = CircuitBreaker()
    for _ in range(5):
        cb.record_failure("upi")
    st = cb._states["upi"]
    st.opened_at = st.opened_at - timedelta(seconds=301)
    assert cb.allow_call("upi")[0] is True
    cb.record_failure("upi")
    assert cb._states["upi"].state == "OPEN"
    assert cb.allow_call("upi") == (False, "circuit_open")


def test_half_open_probe_limit():
    cb = CircuitBreaker()
    for _ in range(5):
        cb.record_failure("crypto")
    st = cb._states["crypto"]
    st.opened_at = st.opened_at - timedelta(seconds=301)
    results = [cb.allow_call("crypto") for _ in range(4)]
    assert [r[0] for r in results] == [True, True, True, False]
    assert results[-1][1] == "half_open_probe_exhausted"


def test_gateways_are_isolated():
    cb = CircuitBreaker()
    for _ in range(5):
        cb.record_failure("stripe")
    assert cb.allow_call("stripe")[0] is False
    assert cb.allow_call("paypal")[0] is True
    snap = cb.snapshot()
    assert snap["stripe"]["state"] == "OPEN"
