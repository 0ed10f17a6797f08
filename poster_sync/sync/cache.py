from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from poster_sync.sync.graph import EntityKind


@dataclass
class EntityCache:
    """Ids known to exist in the warehouse, scoped to a single sync run."""

    known: dict[EntityKind, set[int]] = field(
        default_factory=lambda: {kind: set() for kind in EntityKind}
    )
    menu_categories: dict[int, dict[str, Any]] | None = None

    def has(self, kind: EntityKind, entity_id: int) -> bool:
        return entity_id in self.known[kind]

    def add(self, kind: EntityKind, entity_id: int) -> None:
        self.known[kind].add(entity_id)

    def size(self) -> int:
        return sum(len(ids) for ids in self.known.values())
