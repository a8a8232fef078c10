from hypothesis import given, strategies as st

from relaybox.supervisor import LinearBackoff

bases = st.floats(min_value=0.001, max_value=60, allow_nan=False, allow_infinity=False)


@given(base=bases, attempt=st.integers(min_value=1, max_value=100))
def test_delays_increase_with_attempts(base: float, attempt: int) -> None:
    backoff = LinearBackoff(base=base)

    assert backoff.delay(attempt + 1) > backoff.delay(attempt)


@given(base=bases, attempt=st.integers(min_value=-5, max_value=1))
def test_delay_never_below_base(base: float, attempt: int) -> None:
    assert LinearBackoff(base=base).delay(attempt) == base


@given(max_attempts=st.integers(min_value=0, max_value=20))
def test_budget_allows_exactly_max_attempts(max_attempts: int) -> None:
    backoff = LinearBackoff(max_attempts=max_attempts)

    allowed = [completed for completed in range(max_attempts + 5) if backoff.allows(completed)]

    assert allowed == list(range(max_attempts))
