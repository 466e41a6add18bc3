"""Shared fixtures: an in-memory cluster that stands in for the Kafka gateway."""
from __future__ import annotations

import threading
from collections import Counter
from typing import Dict, List, Optional

import pytest

from kafka_exporter.core.config import Settings
from kafka_exporter.core.errors import GatewayError
from kafka_exporter.domain.models.cluster import Broker, OffsetSpec
from kafka_exporter.domain.models.consumer_group import (
    UNCOMMITTED, CommittedOffset, ConsumerGroup, GroupMember
)
from kafka_exporter.domain.models.metrics import MetricDesc, Sample


def partition(newest=100, oldest=0, leader=1, replicas=(1, 2, 3), isr=(1, 2, 3)) -> dict:
    return {"newest": newest, "oldest": oldest, "leader": leader,
            "replicas": list(replicas), "isr": list(isr)}


def member(member_id: str, **assignment: List[int]) -> GroupMember:
    return GroupMember(member_id=member_id, client_id=member_id, assignment=assignment)


class FakeGateway:
    """
    Cluster state lives in plain dicts. `fail` holds keys of calls that must
    raise, e.g. ("oldest", "t1", 0), ("partitions", "t2"), ("list_groups", 1).
    """

    def __init__(
        self,
        topics: Optional[Dict[str, Dict[int, dict]]] = None,
        brokers: Optional[List[int]] = None,
        groups: Optional[Dict[int, List[ConsumerGroup]]] = None,
        committed: Optional[Dict[str, Dict[str, Dict[int, object]]]] = None,
    ) -> None:
        self.topics = topics if topics is not None else {}
        self.brokers = [Broker(broker_id=b, host=f"b{b}", port=9092) for b in (brokers if brokers is not None else [1])]
        self.groups = groups or {}
        self.committed = committed or {}
        self.fail: set = set()
        self.calls: Counter = Counter()
        self.described: List[List[str]] = []
        self.block: Optional[threading.Event] = None
        self.entered = threading.Event()
        self._lock = threading.Lock()

    def _hit(self, *key) -> None:
        with self._lock:
            self.calls[key[0]] += 1
        if key in self.fail or (key[0],) in self.fail:
            raise GatewayError(f"injected failure {key}")

    def _meta(self, topic, p) -> dict:
        try:
            return self.topics[topic][p]
        except KeyError:
            raise GatewayError(f"unknown partition {topic}/{p}") from None

    def refresh_metadata(self) -> None:
        self._hit("refresh")

    def list_brokers(self) -> List[Broker]:
        self._hit("list_brokers")
        return list(self.brokers)

    def list_topics(self) -> List[str]:
        self._hit("list_topics")
        self.entered.set()
        if self.block is not None:
            self.block.wait(timeout=10)
        return sorted(self.topics)

    def partitions(self, topic: str) -> List[int]:
        self._hit("partitions", topic)
        return sorted(self.topics[topic])

    def leader(self, topic, p) -> int:
        self._hit("leader", topic, p)
        return self._meta(topic, p)["leader"]

    def replicas(self, topic, p) -> List[int]:
        self._hit("replicas", topic, p)
        return list(self._meta(topic, p)["replicas"])

    def in_sync_replicas(self, topic, p) -> List[int]:
        self._hit("isr", topic, p)
        return list(self._meta(topic, p)["isr"])

    def get_offset(self, topic, p, spec: OffsetSpec) -> int:
        key = "newest" if spec is OffsetSpec.NEWEST else "oldest"
        self._hit(key, topic, p)
        return self._meta(topic, p)[key]

    def list_groups(self, broker: Broker) -> List[str]:
        self._hit("list_groups", broker.broker_id)
        return [g.group_id for g in self.groups.get(broker.broker_id, [])]

    def describe_groups(self, broker: Broker, group_ids: List[str]) -> List[ConsumerGroup]:
        self._hit("describe_groups", broker.broker_id)
        self.described.append(list(group_ids))
        return [g for g in self.groups.get(broker.broker_id, []) if g.group_id in group_ids]

    def fetch_committed_offsets(self, broker, group_id, partitions) -> Dict[str, Dict[int, CommittedOffset]]:
        self._hit("fetch_offsets", group_id)
        stored = self.committed.get(group_id, {})
        out: Dict[str, Dict[int, CommittedOffset]] = {}
        for topic, ps in partitions.items():
            for p in ps:
                v = stored.get(topic, {}).get(p, UNCOMMITTED)
                out.setdefault(topic, {})[p] = v if isinstance(v, CommittedOffset) else CommittedOffset(offset=v)
        return out

    def close(self) -> None:
        self.calls["close"] += 1


def by_labels(samples: List[Sample], desc: MetricDesc) -> Dict[tuple, float]:
    """Samples of one metric keyed by their label values."""
    return {s.labels: s.value for s in samples if s.desc == desc}


@pytest.fixture
def cluster() -> FakeGateway:
    """Two topics, one broker, one group consuming t1."""
    return FakeGateway(
        topics={
            "t1": {0: partition(newest=100), 1: partition(newest=200)},
            "t2": {0: partition(newest=50)},
        },
        brokers=[1],
        groups={1: [ConsumerGroup(group_id="g1", state="Stable",
                                  protocol_type="consumer",
                                  members=[member("m1", t1=[0, 1])])]},
        committed={"g1": {"t1": {0: 40, 1: 150}}},
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(kafka_server="localhost:9092", topic_workers=4, _env_file=None)
