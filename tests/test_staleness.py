from panoramic_spectrum.staleness import StalenessFilter


def test_minimum_delay_tracks_pipeline_latency() -> None:
    flt = StalenessFilter(enabled=True, max_allowed_lag_ms=50)
    results = []
    for delay in (0.100, 0.080, 0.150, 0.090):
        results.append(flt.accept(capture_ts=0.0, now=delay))
        if len(results) == 2:
            assert flt.min_observed_delay == 0.080

    assert results == [True, True, False, True]
    assert flt.accepted == 3
    assert flt.dropped == 1


def test_minimum_delay_never_increases() -> None:
    flt = StalenessFilter(max_allowed_lag_ms=1_000)
    flt.accept(10.0, now=10.2)
    flt.accept(10.0, now=10.9)
    assert flt.min_observed_delay == 10.2 - 10.0


def test_first_frame_is_always_accepted() -> None:
    flt = StalenessFilter(max_allowed_lag_ms=0)
    assert not flt.initialized
    assert flt.accept(0.0, now=30.0)
    assert flt.initialized


def test_disabled_filter_accepts_everything() -> None:
    flt = StalenessFilter(enabled=False, max_allowed_lag_ms=1)
    assert flt.accept(0.0, now=0.01)
    assert flt.accept(0.0, now=100.0)
    assert flt.dropped == 0
    assert not flt.initialized


def test_reset_forgets_latency_estimate() -> None:
    flt = StalenessFilter(max_allowed_lag_ms=10)
    flt.accept(0.0, now=0.010)
    assert not flt.accept(0.0, now=0.500)
    flt.reset()
    assert flt.min_observed_delay is None
    assert flt.accept(0.0, now=0.500)


def test_configure_clamps_negative_lag() -> None:
    flt = StalenessFilter()
    flt.configure(enabled=False, max_allowed_lag_ms=-5)
    assert not flt.enabled
    assert flt.max_allowed_lag_ms == 0
