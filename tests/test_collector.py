import logging

from conftest import FakeGateway, by_labels, partition

from kafka_exporter.domain.models.metrics import (
    CLUSTER_BROKERS,
    CONSUMERGROUP_LAG,
    CONSUMERGROUP_LAG_SUM_RATE,
    CONSUMERGROUP_MEMBERS,
    TOPIC_CURRENT_OFFSET,
    SampleBuffer,
)
from kafka_exporter.services.collector import Exporter


class StepClock:
    def __init__(self, start: float) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


def _collect(exporter):
    sink = SampleBuffer()
    exporter.collect(sink)
    return sink.samples()


def test_full_pass(cluster, settings):
    samples = _collect(Exporter(cluster, settings))

    assert by_labels(samples, CLUSTER_BROKERS) == {(): 1.0}
    assert by_labels(samples, TOPIC_CURRENT_OFFSET) == {("t1", "0"): 100.0, ("t1", "1"): 200.0, ("t2", "0"): 50.0}
    assert by_labels(samples, CONSUMERGROUP_LAG) == {("g1", "t1", "0"): 60.0, ("g1", "t1", "1"): 50.0}


def test_topic_samples_precede_group_samples(cluster, settings):
    samples = _collect(Exporter(cluster, settings))

    names = [s.desc.name for s in samples]
    last_topic = max(i for i, n in enumerate(names) if n.startswith("kafka_topic_"))
    first_group = min(i for i, n in enumerate(names) if n.startswith("kafka_consumergroup_"))
    assert last_topic < first_group


def test_no_brokers_skips_group_scan(settings, caplog):
    gw = FakeGateway(topics={"t1": {0: partition()}, "t2": {0: partition()}}, brokers=[])

    with caplog.at_level(logging.ERROR):
        samples = _collect(Exporter(gw, settings))

    assert by_labels(samples, CLUSTER_BROKERS) == {(): 0.0}
    assert by_labels(samples, CONSUMERGROUP_MEMBERS) == {}
    assert gw.calls["list_groups"] == 0
    assert "No valid broker" in caplog.text


def test_broker_listing_failure_counts_as_no_brokers(cluster, settings):
    cluster.fail.add(("list_brokers",))

    samples = _collect(Exporter(cluster, settings))

    assert by_labels(samples, CLUSTER_BROKERS) == {(): 0.0}
    assert by_labels(samples, TOPIC_CURRENT_OFFSET)


def test_rate_appears_on_second_pass(cluster, settings):
    clock = StepClock(1000.0)
    exporter = Exporter(cluster, settings, clock=clock)

    first = _collect(exporter)
    assert list(by_labels(first, CONSUMERGROUP_LAG_SUM_RATE)) == [("g1", "t1", "-1.0", "-2", "0")]
    assert exporter.estimator.baseline("g1", "t1") == 190

    clock.now = 1020.0
    cluster.committed["g1"]["t1"] = {0: 90, 1: 200}
    second = _collect(exporter)

    # 190 -> 290 in 20s; lag sum is 10 + 0
    assert by_labels(second, CONSUMERGROUP_LAG_SUM_RATE) == {("g1", "t1", "5.0", "58", "20"): 10.0}
