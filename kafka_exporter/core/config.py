# kafka_exporter/core/config.py
import json
import re
from enum import Enum
from functools import lru_cache
from typing import Annotated, Dict, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from kafka_exporter.domain.models.metrics import ALL_DESCS

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}
_LABEL_NAME = re.compile(r"[a-zA-Z_][a-zA-Z0-9_]*")


class SaslMechanism(str, Enum):
    PLAIN = "plain"
    SCRAM_SHA256 = "scram-sha256"
    SCRAM_SHA512 = "scram-sha512"
    GSSAPI = "gssapi"


class KerberosAuthType(str, Enum):
    KEYTAB = "keytabAuth"
    USER = "userAuth"


def parse_duration(value: str | float | int) -> float:
    """
    Parse a Go-style duration ("30s", "1m30s", "500ms", "2h") into seconds.
    Bare numbers are taken as seconds.
    """
    if isinstance(value, (int, float)):
        return float(value)
    s = str(value).strip()
    if not s:
        raise ValueError("empty duration")
    try:
        return float(s)
    except ValueError:
        pass
    pos = 0
    total = 0.0
    for m in _DURATION_PART.finditer(s):
        if m.start() != pos:
            break
        total += float(m.group(1)) * _DURATION_UNITS[m.group(2)]
        pos = m.end()
    if pos != len(s) or pos == 0:
        raise ValueError(f"invalid duration {value!r}")
    return total


def _split_csv(v) -> List[str]:
    if v is None:
        return []
    if isinstance(v, str):
        try:
            arr = json.loads(v)
            if isinstance(arr, list):
                return [str(s).strip() for s in arr if str(s).strip()]
        except ValueError:
            pass
        return [s.strip() for s in v.split(",") if s.strip()]
    return [str(s).strip() for s in v if str(s).strip()]


class Settings(BaseSettings):
    """
    Exporter settings loaded from environment variables (and .env).

    Notes
    -----
    - Every variable is prefixed with ``KAFKA_EXPORTER_``.
    - `kafka_server` accepts a JSON array or a comma-separated string:
        KAFKA_EXPORTER_KAFKA_SERVER='broker-1:9092,broker-2:9092'
    - `labels` are constant labels added to every metric, either JSON or
      the compact form:
        KAFKA_EXPORTER_LABELS='cluster=prod,dc=eu-1'
    - `metadata_refresh_interval` accepts Go-style durations ("30s", "1m").
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="KAFKA_EXPORTER_",
        extra="ignore",
    )

    # ---------- Kafka client ----------
    kafka_server: Annotated[List[str], NoDecode] = Field(default_factory=lambda: ["kafka:9092"])
    kafka_version: str = "2.0.0"

    # Client timeouts (ms)
    request_timeout_ms: int = 20_000
    api_version_auto_timeout_ms: int = 10_000

    # Admin connection retry
    admin_connect_max_tries: int = 8
    admin_connect_backoff_sec: float = 1.5

    # ---------- SASL ----------
    sasl_enabled: bool = False
    sasl_handshake: bool = True
    sasl_username: str | None = None
    sasl_password: str | None = None
    sasl_mechanism: SaslMechanism = SaslMechanism.PLAIN
    sasl_service_name: str | None = None
    sasl_kerberos_config_path: str | None = None
    sasl_realm: str | None = None
    sasl_kerberos_auth_type: KerberosAuthType = KerberosAuthType.USER
    sasl_keytab_path: str | None = None

    # ---------- TLS ----------
    tls_enabled: bool = False
    tls_ca_file: str | None = None
    tls_cert_file: str | None = None
    tls_key_file: str | None = None
    tls_insecure_skip_tls_verify: bool = False

    # ---------- Collection ----------
    topic_filter: str = ".*"
    group_filter: str = ".*"
    metadata_refresh_interval: float = Field(
        default=30.0,
        description="Seconds between forced metadata refreshes."
    )
    offset_show_all: bool = Field(
        default=True,
        description="Report offset/lag for every topic a group has committed to, "
                    "not only the partitions its live members are assigned."
    )
    topic_workers: int = Field(default=100, ge=1)
    max_offset_clients: int = Field(
        default=8, ge=1, le=64,
        description="Upper bound on pooled consumers used for offset lookups."
    )
    allow_concurrent: bool = Field(
        default=False,
        description="Run a full collection for every scrape instead of sharing "
                    "results. Should stay disabled on large clusters."
    )
    labels: Annotated[Dict[str, str], NoDecode] = Field(default_factory=dict)

    # ---------- HTTP ----------
    listen_host: str = "0.0.0.0"
    listen_port: int = 9308
    telemetry_path: str = "/metrics"

    # ---------- Logging ----------
    log_level: str = "INFO"
    log_kafka_client: bool = False

    @field_validator("kafka_server", mode="before")
    def _parse_servers(cls, v):
        """Accept JSON array or comma-separated string."""
        servers = _split_csv(v)
        if not servers:
            raise ValueError("at least one kafka server is required")
        return servers

    @field_validator("kafka_version")
    def _check_version(cls, v: str) -> str:
        if not re.fullmatch(r"\d+(\.\d+){1,3}", v.strip()):
            raise ValueError(f"invalid kafka version {v!r}")
        return v.strip()

    @field_validator("topic_filter", "group_filter")
    def _check_regex(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as exc:
            raise ValueError(f"invalid filter regex {v!r}: {exc}") from exc
        return v

    @field_validator("metadata_refresh_interval", mode="before")
    def _parse_interval(cls, v):
        seconds = parse_duration(v)
        if seconds <= 0:
            raise ValueError("metadata refresh interval must be positive")
        return seconds

    @field_validator("sasl_mechanism", mode="before")
    def _lower_mechanism(cls, v):
        # "SCRAM-SHA512" and "scram-sha512" are the same mechanism
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("labels", mode="before")
    def _parse_labels(cls, v):
        """
        Accept JSON mapping or a compact string format:
          'cluster=prod,dc=eu-1'
        """
        if v is None:
            return {}
        if isinstance(v, dict):
            return {str(k): str(val) for k, val in v.items()}
        if isinstance(v, str):
            try:
                obj = json.loads(v)
                if isinstance(obj, dict):
                    return {str(k): str(val) for k, val in obj.items()}
            except ValueError:
                pass
            result: Dict[str, str] = {}
            for part in v.split(","):
                if "=" not in part:
                    continue
                key, value = part.split("=", 1)
                if key.strip():
                    result[key.strip()] = value.strip()
            return result
        return dict(v)

    @field_validator("labels")
    def _check_label_names(cls, v: Dict[str, str]) -> Dict[str, str]:
        reserved = {name for desc in ALL_DESCS for name in desc.labelnames}
        for name in v:
            if not _LABEL_NAME.fullmatch(name) or name.startswith("__"):
                raise ValueError(f"invalid label name {name!r}")
            if name in reserved:
                raise ValueError(f"label {name!r} clashes with a metric label")
        return v

    @field_validator("telemetry_path")
    def _leading_slash(cls, v: str) -> str:
        return v if v.startswith("/") else f"/{v}"

    @property
    def api_version(self) -> tuple[int, ...]:
        return tuple(int(p) for p in self.kafka_version.split("."))


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()
