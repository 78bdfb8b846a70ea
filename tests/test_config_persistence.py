import json

from panoramic_spectrum.config import PanoramicConfig, SweepConfig, gain_key
from panoramic_spectrum.persistence import (
    load_band_plans,
    load_config,
    load_state,
    parse_band_plans,
    save_config,
)


def test_deserialize_skips_missing_unknown_and_bad_keys() -> None:
    cfg = PanoramicConfig(range_min=1.0, palette="Magma")
    cfg.deserialize(
        {
            "rangeMin": 50_000_000,
            "rangeMax": "wide",
            "fullRange": "true",
            "device": "HackRF One",
            "somethingElse": 42,
            "gain.hackrf.LNA": 24,
            "gain.hackrf.VGA": "loud",
        }
    )
    assert cfg.range_min == 50_000_000.0
    assert cfg.range_max == 108_000_000.0
    assert cfg.full_range is False
    assert cfg.device == "HackRF One"
    assert cfg.palette == "Magma"
    assert cfg.get_gain("hackrf", "LNA") == 24.0
    assert not cfg.has_gain("hackrf", "VGA")


def test_serialize_uses_persisted_keys() -> None:
    cfg = PanoramicConfig(lnb_freq=9_750_000_000.0)
    cfg.set_gain("rtlsdr", "LNA", 30)
    data = cfg.serialize()
    assert data["lnbFreq"] == 9_750_000_000.0
    assert data["sampRate"] == 20_000_000
    assert data[gain_key("rtlsdr", "LNA")] == 30.0


def test_config_survives_save_and_load(tmp_path) -> None:
    path = str(tmp_path / "state.json")
    cfg = PanoramicConfig(full_range=True, device="RTL2838 #1", strategy="progressive")
    cfg.set_gain("rtlsdr", "LNA", 12.5)
    save_config(cfg, path)
    assert load_config(path) == cfg


def test_load_state_tolerates_bad_files(tmp_path) -> None:
    missing = tmp_path / "missing.json"
    corrupt = tmp_path / "corrupt.json"
    corrupt.write_text("{not json", encoding="utf-8")
    listing = tmp_path / "list.json"
    listing.write_text("[1, 2]", encoding="utf-8")

    assert load_state(str(missing)) == {}
    assert load_state(str(corrupt)) == {}
    assert load_state(str(listing)) == {}
    assert load_config(str(corrupt)) == PanoramicConfig()


def test_band_plans_skip_malformed_entries() -> None:
    tables = parse_band_plans(
        [
            {
                "name": "ITU Region 1",
                "bands": [
                    {"min": 108_000_000, "max": 87_500_000, "primary": "Broadcasting"},
                    {"min": "low", "max": 10},
                    {"min": 144_000_000, "max": 146_000_000, "color": "red"},
                    {"min": 430_000_000, "max": 440_000_000, "color": "#00ff00"},
                ],
            },
            {"bands": []},
            "not a table",
        ]
    )
    assert [table.name for table in tables] == ["ITU Region 1"]
    bands = tables[0].bands
    assert [(band.min_hz, band.max_hz) for band in bands] == [
        (87_500_000, 108_000_000),
        (430_000_000, 440_000_000),
    ]
    assert [band.primary for band in tables[0].bands_in(100_000_000, 200_000_000)] == [
        "Broadcasting"
    ]


def test_load_band_plans_from_file(tmp_path) -> None:
    path = tmp_path / "bands.json"
    path.write_text(json.dumps([{"name": "Ham", "bands": []}]), encoding="utf-8")
    assert [table.name for table in load_band_plans(str(path))] == ["Ham"]
    assert load_band_plans("") == []
    assert parse_band_plans({"name": "Ham"}) == []


def test_relative_bandwidth_is_clamped() -> None:
    assert SweepConfig(relative_bandwidth_percent=0).relative_bandwidth == 0.01
    assert SweepConfig(relative_bandwidth_percent=250).relative_bandwidth == 1.0
    assert SweepConfig().relative_bandwidth == 0.9
