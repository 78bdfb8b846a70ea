"""Persistence helpers for panoramic state and band plans.

Stores and retrieves the persisted configuration and reads frequency
allocation tables. This module must not import controller, server or SDR
classes; it only handles filesystem I/O and validation.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import jsonschema

from panoramic_spectrum.config import PanoramicConfig


logger = logging.getLogger(__name__)

ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
STATE_PATH = os.path.join(ROOT_DIR, "panoramic-spectrum-state.json")

BAND_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "Frequency band",
    "type": "object",
    "properties": {
        "min": {"type": "number"},
        "max": {"type": "number"},
        "primary": {"type": "string"},
        "secondary": {"type": "string"},
        "footnotes": {"type": "string"},
        "color": {"type": "string", "pattern": "^#[0-9a-fA-F]{6}$"},
    },
    "required": ["min", "max"],
}

TABLE_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "Frequency allocation table",
    "type": "object",
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "bands": {"type": "array"},
    },
    "required": ["name", "bands"],
}


@dataclass(frozen=True)
class FrequencyBand:
    min_hz: int
    max_hz: int
    primary: str = ""
    secondary: str = ""
    footnotes: str = ""
    color: str = "#1f1f1f"


@dataclass
class FrequencyAllocationTable:
    name: str
    bands: List[FrequencyBand] = field(default_factory=list)

    def bands_in(self, min_hz: int, max_hz: int) -> List[FrequencyBand]:
        return [band for band in self.bands if band.max_hz >= min_hz and band.min_hz <= max_hz]


def load_state(path: Optional[str] = None) -> Dict:
    path = path or STATE_PATH
    if not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Ignoring unreadable state file %s: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring state file %s: not an object", path)
        return {}
    return data


def save_state(data: Dict, path: Optional[str] = None) -> None:
    with open(path or STATE_PATH, "w", encoding="utf-8") as handle:
        json.dump(data, handle, indent=2)


def load_config(path: Optional[str] = None) -> PanoramicConfig:
    return PanoramicConfig().deserialize(load_state(path))


def save_config(cfg: PanoramicConfig, path: Optional[str] = None) -> None:
    save_state(cfg.serialize(), path)


def parse_band(obj: Dict[str, Any]) -> FrequencyBand:
    jsonschema.validate(obj, BAND_SCHEMA)
    low, high = int(obj["min"]), int(obj["max"])
    if low > high:
        low, high = high, low
    return FrequencyBand(
        min_hz=low,
        max_hz=high,
        primary=obj.get("primary", ""),
        secondary=obj.get("secondary", ""),
        footnotes=obj.get("footnotes", ""),
        color=obj.get("color", "#1f1f1f"),
    )


def parse_band_plans(data: Any) -> List[FrequencyAllocationTable]:
    """Build allocation tables, skipping anything malformed."""

    if not isinstance(data, list):
        logger.warning("Band plan file must hold a list of tables")
        return []

    tables: List[FrequencyAllocationTable] = []
    for index, entry in enumerate(data):
        try:
            jsonschema.validate(entry, TABLE_SCHEMA)
        except jsonschema.ValidationError as exc:
            logger.warning("Skipping band plan #%d: %s", index, exc.message)
            continue
        table = FrequencyAllocationTable(entry["name"])
        for band_index, band in enumerate(entry["bands"]):
            try:
                table.bands.append(parse_band(band))
            except jsonschema.ValidationError as exc:
                logger.warning(
                    "Skipping band #%d of %s: %s", band_index, table.name, exc.message
                )
        tables.append(table)
    return tables


def load_band_plans(path: Optional[str]) -> List[FrequencyAllocationTable]:
    if not path or not os.path.exists(path):
        return []
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Ignoring unreadable band plan file %s: %s", path, exc)
        return []
    return parse_band_plans(data)
