"""Set reconciliation for unordered remote collections.

Group membership is an unordered collection on the remote side, so
memberships are compared as sets and applied as a delta: every addition
first, then every removal.
"""

from __future__ import annotations

from collections.abc import Hashable, Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SetOperation(str, Enum):
    """Kind of membership mutation."""

    ADD = "add"
    REMOVE = "remove"


@dataclass(frozen=True)
class SetDelta:
    """Additions and removals that turn one set into another."""

    to_add: frozenset[Any] = field(default_factory=frozenset)
    to_remove: frozenset[Any] = field(default_factory=frozenset)

    @property
    def is_empty(self) -> bool:
        return not self.to_add and not self.to_remove

    def operations(self) -> Iterator[tuple[SetOperation, Any]]:
        """Yield mutations in apply order: all additions, then all removals.

        Each half is sorted so that call logs are deterministic.
        """
        for item in sorted(self.to_add):
            yield SetOperation.ADD, item
        for item in sorted(self.to_remove):
            yield SetOperation.REMOVE, item


def reconcile_sets(previous: Iterable[Hashable], desired: Iterable[Hashable]) -> SetDelta:
    """Compute the delta from ``previous`` to ``desired``.

    Pure and total: duplicate elements collapse, order is irrelevant.
    """
    prev = frozenset(previous)
    want = frozenset(desired)
    return SetDelta(to_add=want - prev, to_remove=prev - want)


def attributes_changed(previous: Sequence[Any], desired: Sequence[Any]) -> bool:
    """Full-list comparison for ordered attribute lists.

    The remote attribute update replaces the whole list, so any difference,
    including order, means the complete new list must be sent.
    """
    return tuple(previous) != tuple(desired)
