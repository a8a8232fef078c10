from hypothesis import given, strategies as st

from relaybox.telemetry import TrafficMeter

totals = st.integers(min_value=0, max_value=2**53)
samples = st.lists(st.tuples(totals, totals, st.integers(min_value=0, max_value=10_000)), min_size=1)


@given(samples=samples)
def test_speeds_are_never_negative(samples: list[tuple[int, int, int]]) -> None:
    meter = TrafficMeter()
    for upload, download, count in samples:
        snapshot = meter.sample(upload, download, count)
        assert snapshot.upload_speed >= 0
        assert snapshot.download_speed >= 0
        assert snapshot.connection_count == count


@given(first=st.tuples(totals, totals), delta=st.tuples(totals, totals))
def test_speed_equals_counter_growth(first: tuple[int, int], delta: tuple[int, int]) -> None:
    meter = TrafficMeter()
    _ = meter.sample(first[0], first[1], 0)

    snapshot = meter.sample(first[0] + delta[0], first[1] + delta[1], 0)

    assert (snapshot.upload_speed, snapshot.download_speed) == delta


@given(samples=samples)
def test_first_sample_after_reset_has_no_speed(samples: list[tuple[int, int, int]]) -> None:
    meter = TrafficMeter()
    for upload, download, count in samples:
        _ = meter.sample(upload, download, count)
    meter.reset()

    snapshot = meter.sample(1, 1, 0)

    assert (snapshot.upload_speed, snapshot.download_speed) == (0, 0)
