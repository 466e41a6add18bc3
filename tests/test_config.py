import pytest
from pydantic import ValidationError

from kafka_exporter.core.config import SaslMechanism, Settings, parse_duration


def _settings(**kw) -> Settings:
    return Settings(_env_file=None, **kw)


@pytest.mark.parametrize("value, seconds", [
    ("30s", 30.0),
    ("1m30s", 90.0),
    ("500ms", 0.5),
    ("2h", 7200.0),
    ("45", 45.0),
    (12, 12.0),
])
def test_parse_duration(value, seconds):
    assert parse_duration(value) == seconds


@pytest.mark.parametrize("value", ["", "abc", "10x", "s30"])
def test_parse_duration_rejects_garbage(value):
    with pytest.raises(ValueError):
        parse_duration(value)


def test_defaults():
    s = _settings()
    assert s.kafka_server == ["kafka:9092"]
    assert s.metadata_refresh_interval == 30.0
    assert s.offset_show_all is True
    assert s.topic_workers == 100
    assert s.allow_concurrent is False
    assert s.sasl_mechanism is SaslMechanism.PLAIN
    assert s.telemetry_path == "/metrics"
    assert s.labels == {}


def test_servers_from_comma_separated_string():
    s = _settings(kafka_server="b1:9092, b2:9092,")
    assert s.kafka_server == ["b1:9092", "b2:9092"]


def test_servers_from_env(monkeypatch):
    monkeypatch.setenv("KAFKA_EXPORTER_KAFKA_SERVER", "b1:9092,b2:9092")
    monkeypatch.setenv("KAFKA_EXPORTER_METADATA_REFRESH_INTERVAL", "1m")
    monkeypatch.setenv("KAFKA_EXPORTER_LABELS", "cluster=prod,dc=eu-1")
    s = _settings()
    assert s.kafka_server == ["b1:9092", "b2:9092"]
    assert s.metadata_refresh_interval == 60.0
    assert s.labels == {"cluster": "prod", "dc": "eu-1"}


def test_servers_from_json_array():
    assert _settings(kafka_server='["a:1","b:2"]').kafka_server == ["a:1", "b:2"]


def test_empty_server_list_is_rejected():
    with pytest.raises(ValidationError):
        _settings(kafka_server=" , ")


def test_labels_from_json():
    assert _settings(labels='{"cluster": "prod"}').labels == {"cluster": "prod"}


def test_mechanism_is_case_insensitive():
    assert _settings(sasl_mechanism="SCRAM-SHA512").sasl_mechanism is SaslMechanism.SCRAM_SHA512


def test_unknown_mechanism_is_rejected():
    with pytest.raises(ValidationError):
        _settings(sasl_mechanism="oauthbearer")


def test_invalid_filter_regex_is_rejected():
    with pytest.raises(ValidationError):
        _settings(topic_filter="(unclosed")


def test_non_positive_refresh_interval_is_rejected():
    with pytest.raises(ValidationError):
        _settings(metadata_refresh_interval="0s")


def test_telemetry_path_gets_leading_slash():
    assert _settings(telemetry_path="prom").telemetry_path == "/prom"


def test_api_version_tuple():
    assert _settings(kafka_version="2.8.1").api_version == (2, 8, 1)
    with pytest.raises(ValidationError):
        _settings(kafka_version="latest")


@pytest.mark.parametrize("labels", ["topic=x", "partition=0", "consumergroup=g", "rate=1", "eta=1", "elapsed=1"])
def test_labels_must_not_reuse_metric_labels(labels):
    with pytest.raises(ValidationError, match="clashes with a metric label"):
        _settings(labels=labels)


@pytest.mark.parametrize("labels", ['{"my-cluster": "prod"}', '{"1dc": "eu"}', "__name__=x"])
def test_labels_must_be_valid_prometheus_names(labels):
    with pytest.raises(ValidationError, match="invalid label name"):
        _settings(labels=labels)


def test_clashing_label_from_env_is_rejected(monkeypatch):
    monkeypatch.setenv("KAFKA_EXPORTER_LABELS", "cluster=prod,topic=orders")
    with pytest.raises(ValidationError):
        _settings()
