from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class AggregateKind(str, Enum):
    MEMBER = "member"
    SESSION = "session"


@dataclass(frozen=True, order=True)
class AggregateKey:
    """Identifies one aggregate a transaction is scoped to."""

    kind: AggregateKind
    id: int

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


def member_key(member_id: int) -> AggregateKey:
    return AggregateKey(AggregateKind.MEMBER, int(member_id))


def session_key(session_id: int) -> AggregateKey:
    return AggregateKey(AggregateKind.SESSION, int(session_id))
