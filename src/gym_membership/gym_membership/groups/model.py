from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, Optional


@dataclass(frozen=True)
class Group:
    """A recurring training group; sessions are its dated instances.

    Created and edited by the admin workflow, read-only to this package.
    """

    group_id: int
    name: str
    difficulty_level: Optional[str]
    max_capacity: int
    member_ids: FrozenSet[int] = field(default_factory=frozenset)
    active: bool = True
