"""Per-group policy: assignment strategy, naming and attribute sharing."""

from __future__ import annotations

from dataclasses import asdict, dataclass

from psycopg2.extensions import cursor as PgCursor

from fleetpool.domain.assignment import AssignmentStrategy
from fleetpool.infra.repositories.groups_repository import get_policy

DEFAULT_NAMING_PATTERN = "Unit {index}"


@dataclass(frozen=True)
class GroupPolicy:
    """Group configuration, created and deleted with its group.

    Attributes:
        assign_strategy: How the resolver picks a unit from the free set.
        naming_pattern: Template for member identifiers; ``{index}`` and
            ``{name}`` are substituted.
        share_pricing: Price edits propagate to every member.
        share_specifications: Specification edits propagate to every member.
        share_images: Image edits propagate to every member.
    """

    assign_strategy: AssignmentStrategy = AssignmentStrategy.SEQUENTIAL
    naming_pattern: str = DEFAULT_NAMING_PATTERN
    share_pricing: bool = True
    share_specifications: bool = True
    share_images: bool = True

    @classmethod
    def from_row(cls, row: dict) -> "GroupPolicy":
        return cls(
            assign_strategy=AssignmentStrategy(row["assign_strategy"]),
            naming_pattern=row["naming_pattern"],
            share_pricing=row["share_pricing"],
            share_specifications=row["share_specifications"],
            share_images=row["share_images"],
        )

    def to_row(self) -> dict:
        row = asdict(self)
        row["assign_strategy"] = self.assign_strategy.value
        return row

    def identifier_for(self, index: int, name: str) -> str:
        # replace() rather than format(): operators type these templates
        return self.naming_pattern.replace("{index}", str(index)).replace("{name}", name)


def load_policy(cur: PgCursor, group_id: str, default_strategy: str | None = None) -> GroupPolicy:
    """Load a group's policy, falling back to defaults if the row is missing."""
    row = get_policy(cur, group_id)
    if row is not None:
        return GroupPolicy.from_row(row)
    if default_strategy:
        return GroupPolicy(assign_strategy=AssignmentStrategy(default_strategy))
    return GroupPolicy()
