"""Metric descriptors and the append-only sample stream produced by a scrape."""
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import List, NamedTuple, Tuple

NAMESPACE = "kafka"


def fq_name(subsystem: str, name: str) -> str:
    """Join namespace, subsystem and name the Prometheus way."""
    return "_".join(p for p in (NAMESPACE, subsystem, name) if p)


@dataclass(frozen=True)
class MetricDesc:
    name: str
    documentation: str
    labelnames: Tuple[str, ...] = ()


_TP = ("topic", "partition")
_GTP = ("consumergroup", "topic", "partition")

CLUSTER_BROKERS = MetricDesc(
    fq_name("", "brokers"), "Number of Brokers in the Kafka Cluster.")
TOPIC_PARTITIONS = MetricDesc(
    fq_name("topic", "partitions"), "Number of partitions for this Topic", ("topic",))
TOPIC_CURRENT_OFFSET = MetricDesc(
    fq_name("topic", "partition_current_offset"), "Current Offset of a Broker at Topic/Partition", _TP)
TOPIC_OLDEST_OFFSET = MetricDesc(
    fq_name("topic", "partition_oldest_offset"), "Oldest Offset of a Broker at Topic/Partition", _TP)
TOPIC_PARTITION_LEADER = MetricDesc(
    fq_name("topic", "partition_leader"), "Leader Broker ID of this Topic/Partition", _TP)
TOPIC_PARTITION_REPLICAS = MetricDesc(
    fq_name("topic", "partition_replicas"), "Number of Replicas for this Topic/Partition", _TP)
TOPIC_PARTITION_IN_SYNC_REPLICAS = MetricDesc(
    fq_name("topic", "partition_in_sync_replica"), "Number of In-Sync Replicas for this Topic/Partition", _TP)
TOPIC_PARTITION_USES_PREFERRED_REPLICA = MetricDesc(
    fq_name("topic", "partition_leader_is_preferred"), "1 if Topic/Partition is using the Preferred Broker", _TP)
TOPIC_UNDER_REPLICATED_PARTITION = MetricDesc(
    fq_name("topic", "partition_under_replicated_partition"), "1 if Topic/Partition is under Replicated", _TP)
CONSUMERGROUP_CURRENT_OFFSET = MetricDesc(
    fq_name("consumergroup", "current_offset"), "Current Offset of a ConsumerGroup at Topic/Partition", _GTP)
CONSUMERGROUP_CURRENT_OFFSET_SUM = MetricDesc(
    fq_name("consumergroup", "current_offset_sum"),
    "Current Offset of a ConsumerGroup at Topic for all partitions", ("consumergroup", "topic"))
CONSUMERGROUP_LAG = MetricDesc(
    fq_name("consumergroup", "lag"), "Current Approximate Lag of a ConsumerGroup at Topic/Partition", _GTP)
CONSUMERGROUP_LAG_SUM_RATE = MetricDesc(
    fq_name("consumergroup", "lag_sum_rate"),
    "Approximate Lag of a ConsumerGroup at Topic for all partitions, labelled with the "
    "consumption rate (offsets/s), estimated drain time (s) and seconds since the previous scrape",
    ("consumergroup", "topic", "rate", "eta", "elapsed"))
CONSUMERGROUP_MEMBERS = MetricDesc(
    fq_name("consumergroup", "members"), "Amount of members in a consumer group", ("consumergroup",))

ALL_DESCS: Tuple[MetricDesc, ...] = (
    CLUSTER_BROKERS,
    TOPIC_PARTITIONS,
    TOPIC_CURRENT_OFFSET,
    TOPIC_OLDEST_OFFSET,
    TOPIC_PARTITION_LEADER,
    TOPIC_PARTITION_REPLICAS,
    TOPIC_PARTITION_IN_SYNC_REPLICAS,
    TOPIC_PARTITION_USES_PREFERRED_REPLICA,
    TOPIC_UNDER_REPLICATED_PARTITION,
    CONSUMERGROUP_CURRENT_OFFSET,
    CONSUMERGROUP_CURRENT_OFFSET_SUM,
    CONSUMERGROUP_LAG,
    CONSUMERGROUP_LAG_SUM_RATE,
    CONSUMERGROUP_MEMBERS,
)


class Sample(NamedTuple):
    desc: MetricDesc
    value: float
    labels: Tuple[str, ...] = ()


class SampleBuffer:
    """
    Append-only sink for samples. Safe to share between worker threads;
    nothing in the collection path ever reads it back.
    """

    def __init__(self) -> None:
        self._samples: List[Sample] = []
        self._lock = threading.Lock()

    def emit(self, desc: MetricDesc, value: float, *labels: object) -> None:
        if len(labels) != len(desc.labelnames):
            raise ValueError(f"{desc.name} expects labels {desc.labelnames}, got {labels}")
        sample = Sample(desc, float(value), tuple(str(v) for v in labels))
        with self._lock:
            self._samples.append(sample)

    def samples(self) -> List[Sample]:
        """Copy of everything emitted so far, in emission order."""
        with self._lock:
            return list(self._samples)

    def __len__(self) -> int:
        with self._lock:
            return len(self._samples)
