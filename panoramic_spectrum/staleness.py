"""Stale frame filter for the spectrum stream.

Absolute one-way delay cannot be measured without clock sync, so the filter
tracks the smallest delay seen during the session as the fixed pipeline
latency. A frame whose delay exceeds that minimum by more than the allowed lag
is backlog and gets dropped.
"""

from __future__ import annotations

import logging
import time
from typing import Optional


logger = logging.getLogger(__name__)


class StalenessFilter:
    def __init__(self, enabled: bool = True, max_allowed_lag_ms: int = 500):
        self.enabled = bool(enabled)
        self.max_allowed_lag_ms = int(max_allowed_lag_ms)
        self.min_observed_delay: Optional[float] = None
        self.accepted = 0
        self.dropped = 0

    @property
    def initialized(self) -> bool:
        return self.min_observed_delay is not None

    def configure(
        self,
        enabled: Optional[bool] = None,
        max_allowed_lag_ms: Optional[int] = None,
    ) -> None:
        if enabled is not None:
            self.enabled = bool(enabled)
        if max_allowed_lag_ms is not None:
            self.max_allowed_lag_ms = max(0, int(max_allowed_lag_ms))

    def reset(self) -> None:
        self.min_observed_delay = None
        self.accepted = 0
        self.dropped = 0

    def accept(self, capture_ts: float, now: Optional[float] = None) -> bool:
        """Return True if a frame captured at capture_ts is still worth showing."""

        if not self.enabled:
            self.accepted += 1
            return True

        if now is None:
            now = time.time()
        observed = float(now) - float(capture_ts)

        if self.min_observed_delay is None:
            self.min_observed_delay = observed
            self.accepted += 1
            return True

        # The estimate only tightens.
        if observed < self.min_observed_delay:
            self.min_observed_delay = observed

        excess_ms = (observed - self.min_observed_delay) * 1000.0
        if excess_ms <= self.max_allowed_lag_ms:
            self.accepted += 1
            return True

        self.dropped += 1
        logger.debug(
            "Dropping stale frame: %.1f ms behind (limit %d ms)",
            excess_ms,
            self.max_allowed_lag_ms,
        )
        return False
