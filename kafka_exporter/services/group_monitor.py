# kafka_exporter/services/group_monitor.py
from __future__ import annotations

import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List

from kafka_exporter.domain.models.cluster import Broker
from kafka_exporter.domain.models.consumer_group import UNCOMMITTED, CommittedOffset, ConsumerGroup
from kafka_exporter.domain.models.metrics import (
    CONSUMERGROUP_CURRENT_OFFSET,
    CONSUMERGROUP_CURRENT_OFFSET_SUM,
    CONSUMERGROUP_LAG,
    CONSUMERGROUP_LAG_SUM_RATE,
    CONSUMERGROUP_MEMBERS,
    SampleBuffer,
)
from kafka_exporter.domain.models.topic import PartitionOffsetSnapshot
from kafka_exporter.infra.kafka.gateway import ClusterGateway
from kafka_exporter.services.store import RateEstimator

logger = logging.getLogger(__name__)

# Lag reported for a partition the group has never committed to, so it can
# be alerted on without being mistaken for "caught up".
LAG_UNCOMMITTED = -1


class ConsumerGroupScanner:
    """
    Evaluates consumer groups broker by broker: committed position vs the
    latest produced offset in the scrape's offset snapshot, plus the
    consumption rate derived from the previous scrape.
    """

    def __init__(
        self,
        gateway: ClusterGateway,
        estimator: RateEstimator,
        group_filter: str = ".*",
        show_all: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._gw = gateway
        self._estimator = estimator
        self._filter = re.compile(group_filter)
        self._show_all = show_all
        self._clock = clock

    # ------- public API -------

    def scan(self, brokers: List[Broker], snapshot: PartitionOffsetSnapshot, sink: SampleBuffer) -> None:
        """Evaluate every broker's groups concurrently; returns when all brokers are done."""
        if not brokers:
            return
        with ThreadPoolExecutor(max_workers=len(brokers), thread_name_prefix="group-scan") as ex:
            futures = [ex.submit(self.scan_broker, b, snapshot, sink) for b in brokers]
            for f in futures:
                f.result()

    def scan_broker(self, broker: Broker, snapshot: PartitionOffsetSnapshot, sink: SampleBuffer) -> None:
        now = self._clock()
        try:
            group_ids = self._gw.list_groups(broker)
        except Exception as exc:
            logger.error("Cannot get consumer groups from broker %d: %s", broker.broker_id, exc)
            return

        group_ids = [g for g in group_ids if self._filter.search(g)]
        if not group_ids:
            return

        try:
            groups = self._gw.describe_groups(broker, group_ids)
        except Exception as exc:
            logger.error("Cannot describe groups on broker %d: %s", broker.broker_id, exc)
            return

        for group in groups:
            try:
                self._group(broker, group, snapshot, sink, now)
            except Exception:
                logger.exception("Unexpected failure evaluating group %s", group.group_id)

    # ------- internals -------

    def _evaluation_set(self, group: ConsumerGroup, snapshot: PartitionOffsetSnapshot) -> Dict[str, List[int]] | None:
        if self._show_all:
            return snapshot.topic_partitions()
        if group.assignment_error:
            logger.error("Cannot get member assignment of group %s: %s", group.group_id, group.assignment_error)
            return None
        return group.assigned_partitions()

    def _group(
        self,
        broker: Broker,
        group: ConsumerGroup,
        snapshot: PartitionOffsetSnapshot,
        sink: SampleBuffer,
        now: float,
    ) -> None:
        gid = group.group_id
        sink.emit(CONSUMERGROUP_MEMBERS, group.member_count, gid)

        wanted = self._evaluation_set(group, snapshot)
        if not wanted:
            return

        try:
            committed = self._gw.fetch_committed_offsets(broker, gid, wanted)
        except Exception as exc:
            logger.error("Cannot get offset of group %s: %s", gid, exc)
            return

        for topic in sorted(committed):
            self._topic(gid, topic, committed[topic], snapshot, sink, now)

    def _topic(
        self,
        gid: str,
        topic: str,
        blocks: Dict[int, CommittedOffset],
        snapshot: PartitionOffsetSnapshot,
        sink: SampleBuffer,
        now: float,
    ) -> None:
        # Topics the group never committed to are noise, most of all in show-all mode.
        if not any(b.committed for b in blocks.values()):
            return

        offset_sum = 0
        lag_sum = 0
        for partition in sorted(blocks):
            block = blocks[partition]
            if block.error is not None:
                logger.error("Error for group %s topic %s partition %d: %s", gid, topic, partition, block.error)
                continue

            sink.emit(CONSUMERGROUP_CURRENT_OFFSET, block.offset, gid, topic, partition)
            if block.offset == UNCOMMITTED:
                sink.emit(CONSUMERGROUP_LAG, LAG_UNCOMMITTED, gid, topic, partition)
                continue

            offset_sum += block.offset
            latest = snapshot.latest(topic, partition)
            if latest is None:
                logger.debug("No latest offset for %s/%d this scrape; lag for group %s not reported",
                             topic, partition, gid)
                continue
            lag = latest - block.offset
            lag_sum += lag
            sink.emit(CONSUMERGROUP_LAG, lag, gid, topic, partition)

        sink.emit(CONSUMERGROUP_CURRENT_OFFSET_SUM, offset_sum, gid, topic)
        estimate = self._estimator.update(gid, topic, offset_sum, now)
        sink.emit(CONSUMERGROUP_LAG_SUM_RATE, lag_sum, gid, topic, *estimate.label_values())
