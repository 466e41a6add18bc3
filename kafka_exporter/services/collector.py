"""One full collection pass: topic walk, then consumer groups, then rate bookkeeping."""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from kafka_exporter.core.config import Settings
from kafka_exporter.domain.models.metrics import CLUSTER_BROKERS, SampleBuffer
from kafka_exporter.infra.kafka.gateway import ClusterGateway
from kafka_exporter.services.group_monitor import ConsumerGroupScanner
from kafka_exporter.services.store import RateEstimator
from kafka_exporter.services.topic_walker import OffsetSnapshotBuilder

logger = logging.getLogger(__name__)


class Exporter:
    """Wires the snapshot builder, group scanner and rate estimator for one cluster."""

    def __init__(
        self,
        gateway: ClusterGateway,
        settings: Settings,
        estimator: Optional[RateEstimator] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._gw = gateway
        self._clock = clock
        self.estimator = estimator or RateEstimator()
        self.builder = OffsetSnapshotBuilder(
            gateway,
            topic_filter=settings.topic_filter,
            workers=settings.topic_workers,
            refresh_interval=settings.metadata_refresh_interval,
        )
        self.scanner = ConsumerGroupScanner(
            gateway,
            self.estimator,
            group_filter=settings.group_filter,
            show_all=settings.offset_show_all,
            clock=clock,
        )

    def collect(self, sink: SampleBuffer) -> None:
        started = time.monotonic()
        snapshot = self.builder.build(sink)

        try:
            brokers = self._gw.list_brokers()
        except Exception as exc:
            logger.error("Cannot list brokers: %s", exc)
            brokers = []
        sink.emit(CLUSTER_BROKERS, len(brokers))

        if brokers:
            logger.info("Fetching consumer group metrics")
            self.scanner.scan(brokers, snapshot, sink)
        else:
            logger.error("No valid broker, cannot get consumer group metrics")

        # after every group of this scrape, never per group
        self.estimator.mark_scrape(self._clock())
        logger.debug("Collected %d samples in %.2fs", len(sink), time.monotonic() - started)
