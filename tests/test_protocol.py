import uuid

import jsonschema
import numpy as np
import pytest

from panoramic_spectrum import protocol


def test_payload_header_vectors() -> None:
    vectors = [
        (
            uuid.UUID("00112233-4455-6677-8899-aabbccddeeff"),
            1024,
            "50535750010001000011223344556677" "8899aabbccddeeff0004000000000000",
        ),
        (
            uuid.UUID("12345678-1234-5678-1234-567812345678"),
            4096,
            "50535750010001001234567812345678" "1234567812345678" "0010000000000000",
        ),
    ]
    for payload_id, count, expected_hex in vectors:
        raw = protocol.make_payload_header(protocol.BINARY_KIND_SPECTRUM, payload_id, count)
        assert raw.hex() == expected_hex
        parsed = protocol.parse_payload_header(raw)
        assert parsed["payload_id"] == str(payload_id)
        assert parsed["element_count"] == count


def test_payload_header_rejects_bad_magic() -> None:
    raw = bytearray(protocol.make_payload_header(1, uuid.uuid4(), 8))
    raw[0:4] = b"XXXX"
    with pytest.raises(ValueError):
        protocol.parse_payload_header(bytes(raw))
    with pytest.raises(ValueError):
        protocol.parse_payload_header(b"\x00" * 8)


def test_wire_frames_match_schema() -> None:
    schema = protocol.protocol_json_schema()
    session_id = uuid.uuid4()

    status = protocol.ControllerStatusFrame(
        ts_monotonic_ns=123,
        running=True,
        device="HackRF One",
        antenna="RX",
        range_min_hz=88_000_000,
        range_max_hz=108_000_000,
        window_min_hz=96_000_000,
        window_max_hz=100_000_000,
        mode=protocol.AcquisitionMode.SWEEP,
        full_range=False,
        lnb_offset_hz=0,
        sample_rate_hz=20_000_000.0,
        measured_sample_rate_hz=19_500_000.0,
        frames=12,
        frames_dropped=1,
        message="running",
    )
    window = protocol.WindowChange(
        min_hz=99_500_000,
        max_hz=100_500_000,
        mode=protocol.AcquisitionMode.FIXED_FREQUENCY,
        filter_bw_hz=100_000,
        origin="acquisition",
    )
    spectrum = protocol.SpectrumFrame(
        freq_start_hz=88_000_000,
        freq_end_hz=108_000_000,
        samples=np.zeros(64, dtype=np.float32),
        capture_ts=1.0,
    )
    error = protocol.ControllerErrorFrame(
        ts_monotonic_ns=126,
        error_code="device_busy",
        message="busy",
        recoverable=True,
    )

    frames = [
        protocol.status_to_wire(status, seq=1, session_id=session_id),
        protocol.window_to_wire(window, ts_monotonic_ns=124, seq=2, session_id=session_id),
        protocol.spectrum_meta_to_wire(
            spectrum,
            ts_monotonic_ns=125,
            seq=3,
            session_id=session_id,
            payload_id=uuid.uuid4(),
        ),
        protocol.error_to_wire(error, seq=4, session_id=session_id),
    ]
    for frame in frames:
        jsonschema.validate(frame, schema)

    assert frames[1]["mode"] == "fixed"
    assert frames[2]["n_bins"] == 64


def test_schema_rejects_invalid_frames() -> None:
    schema = protocol.protocol_json_schema()
    session_id = str(uuid.uuid4())

    bad_mode = {
        "proto_version": protocol.PROTO_VERSION,
        "type": "window",
        "ts_monotonic_ns": 1,
        "seq": 1,
        "session_id": session_id,
        "min_hz": 1,
        "max_hz": 2,
        "mode": "zoomed",
        "origin": "controller",
    }
    bad_units = {
        "proto_version": protocol.PROTO_VERSION,
        "type": "spectrum_meta",
        "ts_monotonic_ns": 1,
        "seq": 2,
        "session_id": session_id,
        "payload_id": str(uuid.uuid4()),
        "freq_start_hz": 1,
        "freq_end_hz": 2,
        "n_bins": 4,
        "y_units": "dBFS",
        "dtype": "f32",
        "endianness": "LE",
    }
    missing_status_field = {
        "proto_version": protocol.PROTO_VERSION,
        "type": "status",
        "ts_monotonic_ns": 1,
        "seq": 3,
        "session_id": session_id,
        "running": False,
    }

    for payload in (bad_mode, bad_units, missing_status_field):
        with pytest.raises(jsonschema.ValidationError):
            jsonschema.validate(payload, schema)


def test_unknown_frame_type_is_rejected() -> None:
    with pytest.raises(ValueError):
        protocol.make_frame_base(
            frame_type="spectrogram_meta",
            ts_monotonic_ns=0,
            seq=0,
            session_id=uuid.uuid4(),
        )
