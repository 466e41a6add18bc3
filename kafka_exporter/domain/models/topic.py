"""Per-scrape view of topic partitions and their latest produced offsets."""
from __future__ import annotations

import threading
from typing import Dict, List, Optional


class PartitionOffsetSnapshot:
    """
    topic -> partition -> latest produced offset, built once per scrape.

    Written by the topic workers only; after `seal()` it is read-only and
    group lag is computed against it. A partition whose offset fetch failed
    has no entry at all, which `latest()` reports as None.
    """

    def __init__(self) -> None:
        self._offsets: Dict[str, Dict[int, int]] = {}
        self._partitions: Dict[str, List[int]] = {}
        self._lock = threading.Lock()
        self._sealed = False

    # ---------- writes (builder phase only) ----------
    def add_topic(self, topic: str, partitions: List[int]) -> None:
        with self._lock:
            self._check_open()
            self._partitions[topic] = sorted(partitions)
            self._offsets.setdefault(topic, {})

    def record(self, topic: str, partition: int, offset: int) -> None:
        with self._lock:
            self._check_open()
            self._offsets.setdefault(topic, {})[partition] = int(offset)

    def seal(self) -> None:
        with self._lock:
            self._sealed = True

    def _check_open(self) -> None:
        if self._sealed:
            raise RuntimeError("offset snapshot is sealed")

    # ---------- reads ----------
    @property
    def sealed(self) -> bool:
        return self._sealed

    def latest(self, topic: str, partition: int) -> Optional[int]:
        return self._offsets.get(topic, {}).get(partition)

    def topic_partitions(self) -> Dict[str, List[int]]:
        """Every walked topic and its partitions, whether or not offsets were fetched."""
        return {t: list(ps) for t, ps in self._partitions.items()}

    def __contains__(self, key: tuple) -> bool:
        topic, partition = key
        return self.latest(topic, partition) is not None
