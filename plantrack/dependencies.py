"""Dependency graph engine.

Edges live in the ``dependencies`` table and are never held in memory as a
whole graph: every traversal issues one point query per frontier node.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from collections import deque
from typing import Deque, Dict, List, Optional, Sequence, Set, Tuple

from .database import Database
from .errors import ValidationError
from .models import (
    ChainDirection,
    Dependency,
    DependencyChainItem,
    DependencyType,
    EntityKind,
    EntityRef,
    parse_enum,
    utc_now,
)
from .planning_logging import log_dependency_event

logger = logging.getLogger("plantrack.dependencies")

DEFAULT_MAX_DEPTH = 10


def _row_to_dependency(row: sqlite3.Row) -> Dependency:
    return Dependency(
        id=row["id"],
        source=EntityRef(EntityKind(row["source_type"]), row["source_id"]),
        target=EntityRef(EntityKind(row["target_type"]), row["target_id"]),
        dependency_type=DependencyType(row["dependency_type"]),
        created_at=row["created_at"],
    )


def _type_filter(dependency_types: Optional[Sequence[DependencyType | str]]) -> Tuple[str, List[str]]:
    if not dependency_types:
        return "", []
    values = [parse_enum(DependencyType, t, "dependency type").value for t in dependency_types]
    return f" AND dependency_type IN ({', '.join('?' for _ in values)})", values


class DependencyGraph:
    """Typed directed edges between planning entities.

    ``source`` blocks ``target``: the target cannot start until the source
    resolves. ``create`` does not re-check the graph invariants; callers
    validate with ``exists`` and ``would_create_cycle`` first.
    """

    def __init__(self, db: Database):
        self.db = db

    def create(
        self,
        source: EntityRef,
        target: EntityRef,
        dependency_type: DependencyType | str = DependencyType.BLOCKS,
    ) -> Dependency:
        dependency = Dependency(
            id=str(uuid.uuid4()),
            source=source,
            target=target,
            dependency_type=parse_enum(DependencyType, dependency_type, "dependency type"),
            created_at=utc_now(),
        )
        self.db.execute(
            """
            INSERT INTO dependencies (id, source_type, source_id, target_type, target_id,
                                      dependency_type, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                dependency.id,
                source.kind.value,
                source.id,
                target.kind.value,
                target.id,
                dependency.dependency_type.value,
                dependency.created_at,
            ),
        )
        log_dependency_event(
            "created",
            str(source),
            str(target),
            dependency_id=dependency.id,
            dependency_type=dependency.dependency_type.value,
        )
        return dependency

    def find_by_id(self, dependency_id: str) -> Optional[Dependency]:
        row = self.db.query_one("SELECT * FROM dependencies WHERE id = ?", (dependency_id,))
        return _row_to_dependency(row) if row is not None else None

    def exists(self, source: EntityRef, target: EntityRef) -> bool:
        row = self.db.query_one(
            """
            SELECT 1 FROM dependencies
            WHERE source_type = ? AND source_id = ? AND target_type = ? AND target_id = ?
            """,
            (source.kind.value, source.id, target.kind.value, target.id),
        )
        return row is not None

    def find_by_source(
        self, ref: EntityRef, dependency_types: Optional[Sequence[DependencyType | str]] = None
    ) -> List[Dependency]:
        """Edges leaving ``ref``, oldest first."""
        clause, params = _type_filter(dependency_types)
        rows = self.db.query_all(
            "SELECT * FROM dependencies WHERE source_type = ? AND source_id = ?"
            f"{clause} ORDER BY created_at ASC, rowid ASC",
            [ref.kind.value, ref.id, *params],
        )
        return [_row_to_dependency(row) for row in rows]

    def find_by_target(
        self, ref: EntityRef, dependency_types: Optional[Sequence[DependencyType | str]] = None
    ) -> List[Dependency]:
        """Edges arriving at ``ref``, oldest first."""
        clause, params = _type_filter(dependency_types)
        rows = self.db.query_all(
            "SELECT * FROM dependencies WHERE target_type = ? AND target_id = ?"
            f"{clause} ORDER BY created_at ASC, rowid ASC",
            [ref.kind.value, ref.id, *params],
        )
        return [_row_to_dependency(row) for row in rows]

    def find_by_entity(self, ref: EntityRef) -> List[Dependency]:
        rows = self.db.query_all(
            """
            SELECT * FROM dependencies
            WHERE (source_type = ? AND source_id = ?) OR (target_type = ? AND target_id = ?)
            ORDER BY created_at ASC, rowid ASC
            """,
            (ref.kind.value, ref.id, ref.kind.value, ref.id),
        )
        return [_row_to_dependency(row) for row in rows]

    def get_blockers(self, ref: EntityRef) -> List[EntityRef]:
        """Entities that must resolve before ``ref`` can start."""
        return [dep.source for dep in self.find_by_target(ref, [DependencyType.BLOCKS])]

    def get_blocked(self, ref: EntityRef) -> List[EntityRef]:
        """Entities waiting on ``ref``."""
        return [dep.target for dep in self.find_by_source(ref, [DependencyType.BLOCKS])]

    def would_create_cycle(self, candidate_source: EntityRef, candidate_target: EntityRef) -> bool:
        """Check whether the edge ``candidate_source -> candidate_target`` would close a blocks cycle.

        The new edge makes ``candidate_target`` wait on ``candidate_source``; a
        cycle exists if ``candidate_source`` already (transitively) waits on
        ``candidate_target``. Only ``blocks`` edges are walked.
        """
        if candidate_source == candidate_target:
            return True

        visited: Set[EntityRef] = set()
        queue: Deque[EntityRef] = deque([candidate_source])
        while queue:
            current = queue.popleft()
            if current == candidate_target:
                return True
            if current in visited:
                continue
            visited.add(current)
            for blocker in self.get_blockers(current):
                if blocker not in visited:
                    queue.append(blocker)
        return False

    def get_dependency_chain(
        self,
        ref: EntityRef,
        direction: ChainDirection | str = ChainDirection.UPSTREAM,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> List[DependencyChainItem]:
        """Transitive dependencies of ``ref`` in breadth-first order.

        Upstream walks toward what ``ref`` depends on, downstream toward what
        depends on ``ref``. Every dependency type is followed. Each entity is
        reported once, at the depth it was first reached; the origin itself
        is never reported.
        """
        direction = parse_enum(ChainDirection, direction, "direction")
        if max_depth < 0:
            raise ValidationError(f"max_depth must be non-negative, got {max_depth}")

        upstream = direction is ChainDirection.UPSTREAM
        chain: List[DependencyChainItem] = []
        visited: Set[EntityRef] = {ref}
        queue: Deque[Tuple[EntityRef, int]] = deque([(ref, 0)])

        while queue:
            current, depth = queue.popleft()
            if depth >= max_depth:
                continue
            edges = self.find_by_target(current) if upstream else self.find_by_source(current)
            for edge in edges:
                neighbor = edge.source if upstream else edge.target
                if neighbor in visited:
                    continue
                visited.add(neighbor)
                chain.append(DependencyChainItem(neighbor, edge.dependency_type, depth + 1))
                queue.append((neighbor, depth + 1))

        return chain

    def delete(self, dependency_id: str) -> bool:
        dependency = self.find_by_id(dependency_id)
        if dependency is None:
            return False
        self.db.execute("DELETE FROM dependencies WHERE id = ?", (dependency_id,))
        log_dependency_event("removed", str(dependency.source), str(dependency.target), dependency_id=dependency_id)
        return True

    def delete_between(self, source: EntityRef, target: EntityRef) -> int:
        cursor = self.db.execute(
            """
            DELETE FROM dependencies
            WHERE source_type = ? AND source_id = ? AND target_type = ? AND target_id = ?
            """,
            (source.kind.value, source.id, target.kind.value, target.id),
        )
        if cursor.rowcount:
            log_dependency_event("removed", str(source), str(target), count=cursor.rowcount)
        return cursor.rowcount

    def delete_all_for_entity(self, ref: EntityRef) -> int:
        cursor = self.db.execute(
            """
            DELETE FROM dependencies
            WHERE (source_type = ? AND source_id = ?) OR (target_type = ? AND target_id = ?)
            """,
            (ref.kind.value, ref.id, ref.kind.value, ref.id),
        )
        if cursor.rowcount:
            logger.info(f"Removed {cursor.rowcount} dependencies of {ref}")
            log_dependency_event("purged", str(ref), str(ref), count=cursor.rowcount)
        return cursor.rowcount

    def count_for_entity(self, ref: EntityRef) -> Dict[str, int]:
        row = self.db.query_one(
            """
            SELECT
                SUM(CASE WHEN source_type = ? AND source_id = ? THEN 1 ELSE 0 END) AS as_source,
                SUM(CASE WHEN target_type = ? AND target_id = ? THEN 1 ELSE 0 END) AS as_target
            FROM dependencies
            """,
            (ref.kind.value, ref.id, ref.kind.value, ref.id),
        )
        return {
            "as_source": (row["as_source"] or 0) if row is not None else 0,
            "as_target": (row["as_target"] or 0) if row is not None else 0,
        }
