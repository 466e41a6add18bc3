"""Consumer-group types returned by the gateway's group-protocol calls."""
from __future__ import annotations

from typing import Dict, List

from pydantic import BaseModel, Field

# Kafka answers an offset fetch with -1 when the group never committed
# to that partition.
UNCOMMITTED = -1


class GroupMember(BaseModel):
    """One live member and the partitions it currently owns."""

    member_id: str
    client_id: str = ""
    client_host: str = ""
    assignment: Dict[str, List[int]] = Field(default_factory=dict)


class ConsumerGroup(BaseModel):
    """Described consumer group (coordinator view)."""

    group_id: str
    state: str = ""
    protocol_type: str = ""
    members: List[GroupMember] = Field(default_factory=list)
    # set when a member's assignment could not be decoded
    assignment_error: str | None = None

    @property
    def member_count(self) -> int:
        return len(self.members)

    def assigned_partitions(self) -> Dict[str, List[int]]:
        """Union of every member's assignment, per topic."""
        out: Dict[str, set[int]] = {}
        for m in self.members:
            for topic, partitions in m.assignment.items():
                out.setdefault(topic, set()).update(partitions)
        return {t: sorted(ps) for t, ps in out.items()}


class CommittedOffset(BaseModel):
    """Committed position of a group on one partition.

    `error` carries the broker's per-partition error name, if any; the
    offset is meaningless when it is set.
    """

    offset: int = UNCOMMITTED
    error: str | None = None

    @property
    def committed(self) -> bool:
        return self.error is None and self.offset != UNCOMMITTED
