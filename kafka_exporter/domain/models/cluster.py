"""Cluster- and broker-level types exchanged with the Kafka gateway."""
from __future__ import annotations

from enum import Enum
from typing import List

from pydantic import BaseModel, Field


class OffsetSpec(str, Enum):
    """Which end of a partition log to ask for."""

    NEWEST = "newest"
    OLDEST = "oldest"


class Broker(BaseModel):
    """Identity of a single broker; connections stay inside the gateway."""

    broker_id: int = Field(..., ge=0, description="Numeric broker ID")
    host: str = ""
    port: int = 0
    rack: str | None = None


class PartitionMetadata(BaseModel):
    """Cached leader/replica layout of one partition."""

    topic: str
    partition: int = Field(..., ge=0)
    leader: int = -1
    replicas: List[int] = Field(default_factory=list)
    isr: List[int] = Field(default_factory=list)
    error_code: int = 0
