# kafka_exporter/services/store.py
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

# Reported when no previous scrape exists to compare against.
RATE_UNAVAILABLE = -1.0
ETA_UNAVAILABLE = -2.0
# Reported when the group made no net progress (or rewound).
ETA_NOT_APPLICABLE = -1.0


@dataclass(frozen=True)
class RateEstimate:
    rate: float      # offsets/sec
    eta: float       # seconds to consume `current` at `rate`
    elapsed: float   # seconds since the previous completed scrape

    @property
    def available(self) -> bool:
        return self.rate != RATE_UNAVAILABLE

    def label_values(self) -> Tuple[str, str, str]:
        """(rate, eta, elapsed) formatted for the lag_sum_rate labels."""
        return f"{self.rate:.1f}", f"{self.eta:.0f}", str(int(self.elapsed))


class ConsumptionState:
    """
    Process-wide memory shared between scrapes: the last aggregate committed
    offset per (group, topic) plus one last-scrape timestamp for everybody.

    Created once at startup and only ever touched by `RateEstimator`, under
    `lock`.
    """

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.baselines: Dict[Tuple[str, str], int] = {}
        self.last_scrape: Optional[float] = None


class RateEstimator:
    """
    Derives a consumption rate and drain-time estimate from the aggregate
    committed offset of a (group, topic) between two scrapes.
    """

    def __init__(self, state: ConsumptionState | None = None) -> None:
        self._state = state or ConsumptionState()

    @property
    def state(self) -> ConsumptionState:
        return self._state

    def update(self, group_id: str, topic: str, current: int, now: float) -> RateEstimate:
        st = self._state
        key = (group_id, topic)
        with st.lock:
            previous = st.baselines.get(key, 0)
            st.baselines[key] = int(current)
            last = st.last_scrape

        if last is None:
            return RateEstimate(RATE_UNAVAILABLE, ETA_UNAVAILABLE, 0.0)

        elapsed = now - last
        delta = int(current) - previous
        if delta <= 0:
            return RateEstimate(0.0, ETA_NOT_APPLICABLE, elapsed)
        if elapsed <= 0:
            # two scrapes inside the same instant: nothing to divide by
            return RateEstimate(RATE_UNAVAILABLE, ETA_UNAVAILABLE, 0.0)

        rate = delta / elapsed
        return RateEstimate(rate, current / rate, elapsed)

    def mark_scrape(self, now: float) -> None:
        """Advance the shared timestamp; call once, after every group of the scrape is done."""
        with self._state.lock:
            self._state.last_scrape = now

    def baseline(self, group_id: str, topic: str) -> Optional[int]:
        with self._state.lock:
            return self._state.baselines.get((group_id, topic))
