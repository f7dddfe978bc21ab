"""Per-entity outcomes of batch export and removal operations.

Batch loops don't raise for a single bad entity. They record ``Ok`` or
``Skip`` for it and carry on; the collected report is returned to the
caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Set, Union


@dataclass(frozen=True)
class Ok:
    """Entity was processed."""

    kind: str
    entity_id: int


@dataclass(frozen=True)
class Skip:
    """Entity (or one of its side effects) was skipped."""

    kind: str
    entity_id: int
    reason: str


Outcome = Union[Ok, Skip]


@dataclass
class ResultReport:
    """Outcomes of one operation plus the studies it touched."""

    outcomes: List[Outcome] = field(default_factory=list)
    study_ids: Set[int] = field(default_factory=set)

    def ok(self, kind: str, entity_id: int) -> None:
        self.outcomes.append(Ok(kind, entity_id))

    def skip(self, kind: str, entity_id: int, reason: str) -> None:
        self.outcomes.append(Skip(kind, entity_id, reason))

    def ids(self, kind: str) -> List[int]:
        """IDs of processed entities of one kind, in processing order."""
        return [o.entity_id for o in self.outcomes if isinstance(o, Ok) and o.kind == kind]

    @property
    def skipped(self) -> List[Skip]:
        return [o for o in self.outcomes if isinstance(o, Skip)]

    def summary(self) -> str:
        done = sum(1 for o in self.outcomes if isinstance(o, Ok))
        return f"{done} processed, {len(self.skipped)} skipped, {len(self.study_ids)} studies"


@dataclass
class ExportReport(ResultReport):
    """Report of one export stream."""


@dataclass
class RemovalReport(ResultReport):
    """Report of one removal operation."""

    # Size of the upload dirs of removed study results, measured before removal
    upload_bytes: int = 0

    @property
    def removed_component_result_ids(self) -> List[int]:
        return self.ids("component_result")

    @property
    def removed_study_result_ids(self) -> List[int]:
        return self.ids("study_result")

    @property
    def removed_group_result_ids(self) -> List[int]:
        return self.ids("group_result")
