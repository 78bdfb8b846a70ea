"""Last accepted panoramic spectrum and its text export."""

from __future__ import annotations

import logging
import os
import tempfile
import time
from typing import Optional, Sequence, Union

import numpy as np

from panoramic_spectrum.protocol import SpectrumFrame


logger = logging.getLogger(__name__)

EXPORT_HEADER = (
    "%\n"
    "% Panoramic Spectrum file generated by panoramic-spectrum\n"
    "%\n"
    "\n"
)

# float32 carries 6 reliable decimal digits.
SAMPLE_FORMAT = "{:.6g}"


def format_export(frame: SpectrumFrame) -> str:
    parts = [
        EXPORT_HEADER,
        f"freqMin = {int(frame.freq_start_hz)};\n",
        f"freqMax = {int(frame.freq_end_hz)};\n",
        "PSD = [ ",
    ]
    parts.extend(SAMPLE_FORMAT.format(float(value)) + " " for value in frame.samples)
    parts.append("];\n")
    return "".join(parts)


class SavedSpectrum:
    """Holds the most recent accepted frame for export."""

    def __init__(self) -> None:
        self._frame: Optional[SpectrumFrame] = None

    @property
    def frame(self) -> Optional[SpectrumFrame]:
        return self._frame

    @property
    def has_data(self) -> bool:
        return self._frame is not None

    def set(
        self,
        freq_start_hz: int,
        freq_end_hz: int,
        samples: Union[np.ndarray, Sequence[float]],
        capture_ts: Optional[float] = None,
    ) -> SpectrumFrame:
        data = np.array(samples, dtype=np.float32, copy=True)
        data.setflags(write=False)
        frame = SpectrumFrame(
            freq_start_hz=int(freq_start_hz),
            freq_end_hz=int(freq_end_hz),
            samples=data,
            capture_ts=time.time() if capture_ts is None else float(capture_ts),
        )
        # Single assignment so readers never see a half-updated frame.
        self._frame = frame
        return frame

    def export_to_file(self, path: str) -> bool:
        frame = self._frame
        if frame is None:
            logger.warning("Nothing to export to %s: no spectrum captured yet", path)
            return False

        text = format_export(frame)
        directory = os.path.dirname(os.path.abspath(path))
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(prefix=".psd-", suffix=".tmp", dir=directory)
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as handle:
                handle.write(text)
            os.replace(tmp_path, path)
        except OSError as exc:
            logger.warning("Cannot export spectrum to %s: %s", path, exc)
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            return False
        logger.info("Exported %d bins to %s", frame.n_bins, path)
        return True
