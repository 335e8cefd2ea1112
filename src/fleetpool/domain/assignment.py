"""Assignment resolver - pick one concrete unit from a group's free set.

The resolver never writes. The unit it returns is only a candidate: the
free set can change before the booking transaction runs, so the
coordinator re-checks it under lock.

Strategies (deterministic tie-break on position index):
- sequential: lowest position index first.
- random: uniform over the free set, from a seedable ``random.Random``.
- least_used: fewest pending/confirmed/completed bookings ever, then
  lowest position index.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Sequence

from psycopg2.extensions import cursor as PgCursor

from fleetpool.domain.availability import free_members_in_group
from fleetpool.domain.booking_status import USAGE_STATUSES, status_values
from fleetpool.domain.errors import NoUnitsAvailableError
from fleetpool.domain.intervals import DateRange
from fleetpool.infra.repositories.bookings_repository import usage_counts


class AssignmentStrategy(str, Enum):
    SEQUENTIAL = "sequential"
    RANDOM = "random"
    LEAST_USED = "least_used"


@dataclass(frozen=True)
class Candidate:
    """A free unit as seen by the strategies."""

    unit_id: str
    group_index: int
    usage_count: int = 0


def _position_key(c: Candidate) -> tuple[int, str]:
    return (c.group_index, c.unit_id)


def _pick_sequential(candidates: Sequence[Candidate], rng: random.Random) -> Candidate:
    return min(candidates, key=_position_key)


def _pick_random(candidates: Sequence[Candidate], rng: random.Random) -> Candidate:
    # Sort first so a seeded rng is reproducible whatever order the DB returned
    return rng.choice(sorted(candidates, key=_position_key))


def _pick_least_used(candidates: Sequence[Candidate], rng: random.Random) -> Candidate:
    return min(candidates, key=lambda c: (c.usage_count, c.group_index, c.unit_id))


_HANDLERS: dict[AssignmentStrategy, Callable[[Sequence[Candidate], random.Random], Candidate]] = {
    AssignmentStrategy.SEQUENTIAL: _pick_sequential,
    AssignmentStrategy.RANDOM: _pick_random,
    AssignmentStrategy.LEAST_USED: _pick_least_used,
}

_missing = set(AssignmentStrategy) - set(_HANDLERS)
if _missing:
    raise RuntimeError(f"assignment strategies without handler: {sorted(s.value for s in _missing)}")


def pick_unit(
    candidates: Iterable[Candidate],
    strategy: AssignmentStrategy | str,
    rng: random.Random | None = None,
) -> str:
    """Apply ``strategy`` to a free set and return the chosen unit id.

    Raises:
        NoUnitsAvailableError: If ``candidates`` is empty.
        ValueError: If ``strategy`` is not a known strategy name.
    """
    strategy = AssignmentStrategy(strategy)
    pool = list(candidates)
    if not pool:
        raise NoUnitsAvailableError("no free unit in group")
    return _HANDLERS[strategy](pool, rng or random.Random()).unit_id


def resolve(
    cur: PgCursor,
    group_id: str,
    period: DateRange,
    strategy: AssignmentStrategy | str,
    *,
    rng: random.Random | None = None,
    exclude: Iterable[str] = (),
) -> str:
    """Pick a candidate unit of ``group_id`` for ``period``.

    Args:
        cur: Database cursor (reads only).
        group_id: Group to assign from.
        period: Requested range.
        strategy: Assignment strategy.
        rng: Random source for the random strategy.
        exclude: Unit ids to leave out (candidates that already lost a race).

    Raises:
        NotFoundError: If the group does not exist.
        NoUnitsAvailableError: If no member is free.
    """
    strategy = AssignmentStrategy(strategy)
    excluded = set(exclude)
    free = [m for m in free_members_in_group(cur, group_id, period) if m["id"] not in excluded]
    if not free:
        raise NoUnitsAvailableError(
            "no free unit in group", group_id=group_id, start=period.start, end=period.end
        )

    usage: dict[str, int] = {}
    if strategy is AssignmentStrategy.LEAST_USED:
        usage = usage_counts(
            cur,
            unit_ids=[m["id"] for m in free],
            statuses=status_values(USAGE_STATUSES),
        )

    candidates = [
        Candidate(
            unit_id=m["id"],
            group_index=m["group_index"] or 0,
            usage_count=usage.get(m["id"], 0),
        )
        for m in free
    ]
    return pick_unit(candidates, strategy, rng)
