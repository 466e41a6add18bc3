# kafka_exporter/services/topic_walker.py
from __future__ import annotations

import logging
import queue
import re
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, TypeVar

from kafka_exporter.domain.models.cluster import OffsetSpec
from kafka_exporter.domain.models.metrics import (
    TOPIC_CURRENT_OFFSET,
    TOPIC_OLDEST_OFFSET,
    TOPIC_PARTITION_IN_SYNC_REPLICAS,
    TOPIC_PARTITION_LEADER,
    TOPIC_PARTITION_REPLICAS,
    TOPIC_PARTITION_USES_PREFERRED_REPLICA,
    TOPIC_PARTITIONS,
    TOPIC_UNDER_REPLICATED_PARTITION,
    SampleBuffer,
)
from kafka_exporter.domain.models.topic import PartitionOffsetSnapshot
from kafka_exporter.infra.kafka.gateway import ClusterGateway

logger = logging.getLogger(__name__)

T = TypeVar("T")

# one per worker; tells it the queue is closed
_CLOSED = object()


def uses_preferred_replica(leader: Optional[int], replicas: Optional[List[int]]) -> bool:
    return leader is not None and bool(replicas) and replicas[0] == leader


def is_under_replicated(replicas: Optional[List[int]], isr: Optional[List[int]]) -> bool:
    return replicas is not None and isr is not None and len(isr) < len(replicas)


def pool_size(workers: int, topic_count: int) -> int:
    return max(0, min(workers, topic_count // 2))


class OffsetSnapshotBuilder:
    """
    Walks every topic matching `topic_filter` with a bounded pool of workers
    and records partition facts into the sample sink. Latest produced offsets
    also go into a `PartitionOffsetSnapshot` for the group scanner.

    Every fetch is independent: a failure is logged and drops only the
    sample it would have produced.
    """

    def __init__(
        self,
        gateway: ClusterGateway,
        topic_filter: str = ".*",
        workers: int = 100,
        refresh_interval: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._gw = gateway
        self._filter = re.compile(topic_filter)
        self._workers = workers
        self._refresh_interval = refresh_interval
        self._clock = clock
        self._next_refresh = clock()
        self._refresh_lock = threading.Lock()

    # ------- public API -------

    def maybe_refresh(self) -> bool:
        """Refresh gateway metadata when the refresh interval has elapsed."""
        with self._refresh_lock:
            now = self._clock()
            if now < self._next_refresh:
                return False
            logger.info("Refreshing client metadata")
            try:
                self._gw.refresh_metadata()
            except Exception as exc:
                logger.error("Cannot refresh topics, using cached data: %s", exc)
            self._next_refresh = now + self._refresh_interval
            return True

    def build(self, sink: SampleBuffer) -> PartitionOffsetSnapshot:
        self.maybe_refresh()
        snapshot = PartitionOffsetSnapshot()

        try:
            topics = self._gw.list_topics()
        except Exception as exc:
            logger.error("Cannot get topics: %s", exc)
            topics = []

        selected = [t for t in topics if self._filter.search(t)]
        n = pool_size(self._workers, len(topics))
        if n == 0:
            if selected:
                logger.warning(
                    "No topic workers for %d known topic(s) (topic_workers=%d); skipping topic metrics",
                    len(topics), self._workers,
                )
            snapshot.seal()
            return snapshot

        work: "queue.Queue[object]" = queue.Queue()
        with ThreadPoolExecutor(max_workers=n, thread_name_prefix="topic-worker") as ex:
            futures = [ex.submit(self._drain, work, snapshot, sink) for _ in range(n)]
            for topic in selected:
                work.put(topic)
            for _ in range(n):
                work.put(_CLOSED)
            for f in futures:
                f.result()

        snapshot.seal()
        logger.debug("Walked %d topic(s) with %d worker(s)", len(selected), n)
        return snapshot

    # ------- workers -------

    def _drain(self, work: "queue.Queue[object]", snapshot: PartitionOffsetSnapshot, sink: SampleBuffer) -> None:
        while True:
            topic = work.get()
            if topic is _CLOSED:
                return
            try:
                self._topic(str(topic), snapshot, sink)
            except Exception:
                logger.exception("Unexpected failure collecting topic %s", topic)

    def _topic(self, topic: str, snapshot: PartitionOffsetSnapshot, sink: SampleBuffer) -> None:
        try:
            partitions = self._gw.partitions(topic)
        except Exception as exc:
            logger.error("Cannot get partitions of topic %s: %s", topic, exc)
            return
        sink.emit(TOPIC_PARTITIONS, len(partitions), topic)
        snapshot.add_topic(topic, partitions)
        for partition in partitions:
            self._partition(topic, partition, snapshot, sink)

    def _partition(self, topic: str, partition: int, snapshot: PartitionOffsetSnapshot, sink: SampleBuffer) -> None:
        gw = self._gw

        leader = self._fetch("leader", gw.leader, topic, partition)
        if leader is not None:
            sink.emit(TOPIC_PARTITION_LEADER, leader, topic, partition)

        newest = self._fetch("current offset", gw.get_offset, topic, partition, OffsetSpec.NEWEST)
        if newest is not None:
            snapshot.record(topic, partition, newest)
            sink.emit(TOPIC_CURRENT_OFFSET, newest, topic, partition)

        oldest = self._fetch("oldest offset", gw.get_offset, topic, partition, OffsetSpec.OLDEST)
        if oldest is not None:
            sink.emit(TOPIC_OLDEST_OFFSET, oldest, topic, partition)

        replicas = self._fetch("replicas", gw.replicas, topic, partition)
        if replicas is not None:
            sink.emit(TOPIC_PARTITION_REPLICAS, len(replicas), topic, partition)

        isr = self._fetch("in-sync replicas", gw.in_sync_replicas, topic, partition)
        if isr is not None:
            sink.emit(TOPIC_PARTITION_IN_SYNC_REPLICAS, len(isr), topic, partition)

        sink.emit(TOPIC_PARTITION_USES_PREFERRED_REPLICA,
                  1 if uses_preferred_replica(leader, replicas) else 0, topic, partition)
        sink.emit(TOPIC_UNDER_REPLICATED_PARTITION,
                  1 if is_under_replicated(replicas, isr) else 0, topic, partition)

    @staticmethod
    def _fetch(what: str, fn: Callable[..., T], topic: str, partition: int, *args) -> Optional[T]:
        try:
            return fn(topic, partition, *args)
        except Exception as exc:
            logger.error("Cannot get %s of topic %s partition %d: %s", what, topic, partition, exc)
            return None
