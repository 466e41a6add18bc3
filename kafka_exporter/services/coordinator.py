# kafka_exporter/services/coordinator.py
from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from kafka_exporter.domain.models.metrics import Sample, SampleBuffer

logger = logging.getLogger(__name__)


class ScrapeCoordinator:
    """
    Shares one collection between every scrape that arrives while it runs.

    The first caller to register while nothing is running drives the
    collection; later callers park on that cycle's completion event. When the
    driver finishes it copies the buffered samples into every registered
    stream, clears the registry and sets the event, all under `_lock`. The
    lock is never held while the cluster is being queried.

    With `allow_concurrent=True` every call runs its own collection. That
    multiplies cluster load by the number of concurrent scrapers.
    """

    def __init__(self, collect: Callable[[SampleBuffer], None], allow_concurrent: bool = False) -> None:
        self._collect = collect
        self._allow_concurrent = allow_concurrent
        self._lock = threading.Lock()
        self._streams: List[List[Sample]] = []
        self._done: Optional[threading.Event] = None
        self.cycles = 0

    @property
    def pending(self) -> int:
        """Callers registered on the cycle in flight."""
        with self._lock:
            return len(self._streams)

    def request_scrape(self) -> List[Sample]:
        if self._allow_concurrent:
            buf = SampleBuffer()
            self._run(buf)
            return buf.samples()

        stream: List[Sample] = []
        with self._lock:
            self._streams.append(stream)
            driver = len(self._streams) == 1
            if driver:
                self._done = threading.Event()
            else:
                logger.info("concurrent calls detected, waiting for first to finish")
            done = self._done

        if driver:
            self._drive(done)
        else:
            done.wait()
        return stream

    def _drive(self, done: threading.Event) -> None:
        buf = SampleBuffer()
        try:
            self._run(buf)
        finally:
            samples = buf.samples()
            with self._lock:
                for stream in self._streams:
                    stream.extend(samples)
                self._streams = []
                self._done = None
                done.set()

    def _run(self, buf: SampleBuffer) -> None:
        with self._lock:
            self.cycles += 1
        try:
            self._collect(buf)
        except Exception:
            logger.exception("Collection failed; serving the %d samples gathered so far", len(buf))
