import threading

import numpy as np

from panoramic_spectrum.protocol import AcquisitionMode
from panoramic_spectrum.sdr.pluto import NullRadio
from panoramic_spectrum.worker import SweepWorker, central_bins, plan_steps, power_db


def test_plan_steps_continuous_starts_at_window_edge() -> None:
    assert plan_steps(130, 330, 100, "continuous") == [180, 280]


def test_plan_steps_discrete_aligns_to_grid() -> None:
    assert plan_steps(130, 330, 100, "discrete") == [150, 250, 350]


def test_plan_steps_narrow_window_needs_one_step() -> None:
    assert plan_steps(1_000, 1_010, 100, "continuous") == [1_050]


def test_central_bins_keeps_middle_fraction() -> None:
    assert central_bins(np.arange(10), 0.5).tolist() == [2, 3, 4, 5, 6]
    assert central_bins(np.arange(4), 0.0).size == 1


def test_power_db_peaks_at_tone_bin() -> None:
    n = 64
    tone = np.exp(2j * np.pi * 8 * np.arange(n) / n)
    db = power_db(tone, np.hanning(n))
    assert db.dtype == np.float32
    assert int(np.argmax(db)) == n // 2 + 8


def test_worker_emits_panorama_over_window() -> None:
    frames = []
    done = threading.Event()

    def on_frame(frame) -> None:
        frames.append(frame)
        worker.stop()
        done.set()

    errors = []
    worker = SweepWorker(
        NullRadio(256, seed=1),
        frame_cb=on_frame,
        error_cb=errors.append,
        params={
            "min_hz": 100_000_000,
            "max_hz": 110_000_000,
            "mode": AcquisitionMode.SWEEP,
            "sample_rate_hz": 2_000_000,
            "rtt_ms": 0,
        },
        seed=1,
    )
    worker.start()
    assert done.wait(timeout=5.0)
    worker.join(timeout=5.0)

    assert errors == []
    frame = frames[0]
    assert (frame.freq_start_hz, frame.freq_end_hz) == (100_000_000, 110_000_000)
    assert frame.samples.ndim == 1
    assert frame.samples.size == 1280


def test_fixed_mode_plans_single_step() -> None:
    radio = NullRadio(128)
    worker = SweepWorker(
        radio,
        frame_cb=lambda frame: None,
        error_cb=lambda message: None,
        params={
            "min_hz": 99_500_000,
            "max_hz": 100_500_000,
            "mode": AcquisitionMode.FIXED_FREQUENCY,
        },
    )
    worker._apply_pending()
    assert worker._steps == [100_000_000]
    assert radio.sample_rate == 1_000_000
