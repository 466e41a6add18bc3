from __future__ import annotations

import contextlib
import logging
import queue
import threading
import time
from typing import Dict, Iterator, List, Optional, Protocol

from kafka import KafkaAdminClient, KafkaConsumer, TopicPartition
from kafka.errors import KafkaError, KafkaTimeoutError, NoBrokersAvailable, NodeNotReadyError

from kafka_exporter.core.config import Settings, get_settings
from kafka_exporter.core.errors import GatewayError
from kafka_exporter.domain.models.cluster import Broker, OffsetSpec, PartitionMetadata
from kafka_exporter.domain.models.consumer_group import (
    UNCOMMITTED, CommittedOffset, ConsumerGroup, GroupMember
)
from kafka_exporter.infra.kafka.security import client_security_kwargs

logger = logging.getLogger(__name__)

CLIENT_ID = "kafka_exporter"

_RETRYABLE = (KafkaTimeoutError, NoBrokersAvailable, NodeNotReadyError)


class ClusterGateway(Protocol):
    """Everything the collection engine needs from the cluster. Any call may raise."""

    def list_brokers(self) -> List[Broker]: ...
    def list_topics(self) -> List[str]: ...
    def refresh_metadata(self) -> None: ...
    def partitions(self, topic: str) -> List[int]: ...
    def leader(self, topic: str, partition: int) -> int: ...
    def replicas(self, topic: str, partition: int) -> List[int]: ...
    def in_sync_replicas(self, topic: str, partition: int) -> List[int]: ...
    def get_offset(self, topic: str, partition: int, spec: OffsetSpec) -> int: ...
    def list_groups(self, broker: Broker) -> List[str]: ...
    def describe_groups(self, broker: Broker, group_ids: List[str]) -> List[ConsumerGroup]: ...
    def fetch_committed_offsets(
        self, broker: Broker, group_id: str, partitions: Dict[str, List[int]]
    ) -> Dict[str, Dict[int, CommittedOffset]]: ...


class KafkaGateway:
    """
    Lazy, retrying adapter around kafka-python Admin + Consumer APIs.

    Topic/broker metadata is cached and only replaced by `refresh_metadata()`;
    offset lookups go through a small pool of consumers so topic workers can
    query in parallel without sharing one (non thread-safe) client.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        # Resolved once; bad TLS/SASL settings fail here, at startup.
        self._security = client_security_kwargs(self._settings)
        self._admin: KafkaAdminClient | None = None
        # KafkaAdminClient is not safe for concurrent use.
        self._admin_lock = threading.RLock()

        self._idle: "queue.LifoQueue[KafkaConsumer]" = queue.LifoQueue()
        self._consumer_slots = threading.BoundedSemaphore(self._settings.max_offset_clients)
        self._created: List[KafkaConsumer] = []
        self._created_lock = threading.Lock()

        self._meta_lock = threading.Lock()
        self._brokers: List[Broker] | None = None
        self._topics: Dict[str, Dict[int, PartitionMetadata]] | None = None

    # ---------- bootstrap common kwargs ----------
    def _common_kwargs(self) -> dict:
        s = self._settings
        kw = dict(
            bootstrap_servers=list(s.kafka_server),
            client_id=CLIENT_ID,
            request_timeout_ms=s.request_timeout_ms,
            api_version_auto_timeout_ms=s.api_version_auto_timeout_ms,
            api_version=s.api_version,
        )
        kw.update(self._security)
        return kw

    def _ensure_admin(self) -> KafkaAdminClient:
        if self._admin is not None:
            return self._admin

        s = self._settings
        last_exc: Exception | None = None
        for attempt in range(1, s.admin_connect_max_tries + 1):
            try:
                self._admin = KafkaAdminClient(**self._common_kwargs())
                logger.info("Connected admin client to %s", ",".join(s.kafka_server))
                return self._admin
            except _RETRYABLE as exc:
                last_exc = exc
                logger.warning("Admin connect attempt %d/%d failed: %s",
                               attempt, s.admin_connect_max_tries, exc)
                time.sleep(s.admin_connect_backoff_sec * attempt)
        raise GatewayError(f"cannot connect to {s.kafka_server}: {last_exc}")

    @contextlib.contextmanager
    def _translate(self, what: str) -> Iterator[None]:
        try:
            yield
        except GatewayError:
            raise
        except (KafkaError, OSError) as exc:
            raise GatewayError(f"{what}: {exc}") from exc

    @contextlib.contextmanager
    def _consumer(self) -> Iterator[KafkaConsumer]:
        with self._consumer_slots:
            try:
                c = self._idle.get_nowait()
            except queue.Empty:
                c = KafkaConsumer(enable_auto_commit=False, **self._common_kwargs())
                with self._created_lock:
                    self._created.append(c)
            try:
                yield c
            finally:
                self._idle.put(c)

    # ---------- Metadata ----------
    def refresh_metadata(self) -> None:
        with self._translate("refresh metadata"), self._admin_lock:
            admin = self._ensure_admin()
            cluster = admin.describe_cluster()
            names = list(admin.list_topics())
            described = admin.describe_topics(names) if names else []

        brokers = [
            Broker(broker_id=b["node_id"], host=b.get("host", ""), port=b.get("port", 0), rack=b.get("rack"))
            for b in cluster.get("brokers", [])
        ]
        topics: Dict[str, Dict[int, PartitionMetadata]] = {}
        for t in described:
            if t.get("error_code"):
                logger.warning("Topic %s described with error code %s", t.get("topic"), t["error_code"])
            topics[t["topic"]] = {
                p["partition"]: PartitionMetadata(
                    topic=t["topic"],
                    partition=p["partition"],
                    leader=p.get("leader", -1),
                    replicas=list(p.get("replicas") or []),
                    isr=list(p.get("isr") or []),
                    error_code=p.get("error_code", 0),
                )
                for p in t.get("partitions", [])
            }
        with self._meta_lock:
            self._brokers = brokers
            self._topics = topics
        logger.debug("Metadata refreshed: %d brokers, %d topics", len(brokers), len(topics))

    def _metadata(self) -> tuple[List[Broker], Dict[str, Dict[int, PartitionMetadata]]]:
        if self._topics is None or self._brokers is None:
            self.refresh_metadata()
        with self._meta_lock:
            return self._brokers or [], self._topics or {}

    def _partition(self, topic: str, partition: int) -> PartitionMetadata:
        _, topics = self._metadata()
        try:
            return topics[topic][partition]
        except KeyError:
            raise GatewayError(f"unknown partition {topic}/{partition}") from None

    def list_brokers(self) -> List[Broker]:
        brokers, _ = self._metadata()
        return list(brokers)

    def list_topics(self) -> List[str]:
        _, topics = self._metadata()
        return sorted(topics)

    def partitions(self, topic: str) -> List[int]:
        _, topics = self._metadata()
        if topic not in topics:
            raise GatewayError(f"unknown topic {topic}")
        return sorted(topics[topic])

    def leader(self, topic: str, partition: int) -> int:
        meta = self._partition(topic, partition)
        if meta.leader < 0:
            raise GatewayError(f"no leader for {topic}/{partition}")
        return meta.leader

    def replicas(self, topic: str, partition: int) -> List[int]:
        return list(self._partition(topic, partition).replicas)

    def in_sync_replicas(self, topic: str, partition: int) -> List[int]:
        return list(self._partition(topic, partition).isr)

    # ---------- Offsets ----------
    def get_offset(self, topic: str, partition: int, spec: OffsetSpec) -> int:
        tp = TopicPartition(topic, partition)
        with self._translate(f"{spec.value} offset of {topic}/{partition}"), self._consumer() as c:
            res = c.end_offsets([tp]) if spec is OffsetSpec.NEWEST else c.beginning_offsets([tp])
        if res.get(tp) is None:
            raise GatewayError(f"no {spec.value} offset returned for {topic}/{partition}")
        return int(res[tp])

    # ---------- Consumer Groups ----------
    def list_groups(self, broker: Broker) -> List[str]:
        with self._translate(f"list groups on broker {broker.broker_id}"), self._admin_lock:
            pairs = self._ensure_admin().list_consumer_groups(broker_ids=[broker.broker_id])
        return sorted({gid for gid, _ in pairs})

    def describe_groups(self, broker: Broker, group_ids: List[str]) -> List[ConsumerGroup]:
        if not group_ids:
            return []
        with self._translate(f"describe groups on broker {broker.broker_id}"), self._admin_lock:
            infos = self._ensure_admin().describe_consumer_groups(
                group_ids, group_coordinator_id=broker.broker_id
            )
        return [_to_group(info) for info in infos]

    def fetch_committed_offsets(
        self, broker: Broker, group_id: str, partitions: Dict[str, List[int]]
    ) -> Dict[str, Dict[int, CommittedOffset]]:
        tps = [TopicPartition(t, p) for t, ps in partitions.items() for p in ps]
        if not tps:
            # an empty list would make kafka-python fetch every committed partition
            return {}
        with self._translate(f"fetch offsets of group {group_id}"), self._admin_lock:
            res = self._ensure_admin().list_consumer_group_offsets(
                group_id, group_coordinator_id=broker.broker_id, partitions=tps
            )
        out: Dict[str, Dict[int, CommittedOffset]] = {}
        for tp in tps:
            meta = res.get(tp)
            offset = meta.offset if meta is not None and meta.offset is not None else UNCOMMITTED
            out.setdefault(tp.topic, {})[tp.partition] = CommittedOffset(offset=offset)
        return out

    # ---------- Lifecycle ----------
    def close(self) -> None:
        with self._created_lock:
            consumers, self._created = self._created, []
        for c in consumers:
            with contextlib.suppress(Exception):
                c.close()
        with self._admin_lock:
            if self._admin is not None:
                with contextlib.suppress(Exception):
                    self._admin.close()
                self._admin = None


def _assignment_topics(raw) -> Dict[str, List[int]]:
    """Turn a decoded consumer-protocol assignment into {topic: [partition]}."""
    if not raw:
        return {}
    pairs = getattr(raw, "assignment", None)
    if pairs is not None:
        return {topic: sorted(partitions) for topic, partitions in pairs}
    if hasattr(raw, "partitions"):
        out: Dict[str, List[int]] = {}
        for tp in raw.partitions():
            out.setdefault(tp.topic, []).append(tp.partition)
        return {t: sorted(ps) for t, ps in out.items()}
    raise ValueError(f"cannot decode member assignment of type {type(raw).__name__}")


def _to_group(info) -> ConsumerGroup:
    members: List[GroupMember] = []
    error: str | None = None
    for m in info.members:
        assignment: Dict[str, List[int]] = {}
        if info.protocol_type == "consumer":
            try:
                assignment = _assignment_topics(m.member_assignment)
            except ValueError as exc:
                error = str(exc)
        members.append(GroupMember(
            member_id=m.member_id,
            client_id=m.client_id,
            client_host=m.client_host,
            assignment=assignment,
        ))
    return ConsumerGroup(
        group_id=info.group,
        state=info.state or "",
        protocol_type=info.protocol_type or "",
        members=members,
        assignment_error=error,
    )
