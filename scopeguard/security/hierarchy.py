"""
Manager-chain queries over the parent-pointer graph held by the rule store.

All walks are iterative with a visited set and a hard step bound, so corrupted
data (pre-existing loops, absurdly deep chains) cannot cause unbounded work.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from scopeguard.context import Hierarchy, Subordinate
from scopeguard.errors import HierarchyValidationError
from scopeguard.store.gateway import RuleStoreGateway

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 10


@dataclass(frozen=True)
class CycleCheck:
    is_cycle: bool
    path: tuple[str, ...] = ()


class HierarchyResolver:
    def __init__(self, gateway: RuleStoreGateway, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        self._gateway = gateway
        self._max_depth = max_depth

    @property
    def max_depth(self) -> int:
        return self._max_depth

    def resolve(self, user_id: str) -> Hierarchy:
        """Manager plus direct (one level) subordinates."""
        manager_id = self._gateway.find_manager(user_id)
        subordinates = tuple(
            Subordinate(id=row.id, display_name=row.display_name, level=1)
            for row in self._gateway.find_direct_subordinates(user_id)
        )
        return Hierarchy(manager_id=manager_id, subordinates=subordinates)

    def would_create_cycle(self, user_id: str, candidate_manager_id: str) -> CycleCheck:
        """
        Walk the candidate's ancestor chain; a cycle exists if ``user_id`` shows up.

        The returned path starts at the candidate and ends at ``user_id``.
        """
        path: list[str] = []
        visited: set[str] = set()
        current: str | None = candidate_manager_id

        while current is not None and current not in visited and len(path) <= self._max_depth:
            visited.add(current)
            path.append(current)
            if current == user_id:
                logger.debug("Hierarchy cycle user=%s candidate=%s path=%s", user_id, candidate_manager_id, path)
                return CycleCheck(is_cycle=True, path=tuple(path))
            current = self._gateway.find_manager(current)

        return CycleCheck(is_cycle=False)

    def depth_if_assigned(self, user_id: str, candidate_manager_id: str) -> int:
        """
        Depth of ``user_id`` (1 = reports to a root) once placed under the candidate.

        Counting stops at ``max_depth + 1`` so callers can detect an overflow.
        """
        depth = 1
        visited: set[str] = {user_id}
        current = candidate_manager_id

        while depth <= self._max_depth:
            visited.add(current)
            parent = self._gateway.find_manager(current)
            if parent is None or parent in visited:
                break
            current = parent
            depth += 1

        return depth

    def validate_assignment(self, user_id: str, candidate_manager_id: str) -> None:
        """Raise ``HierarchyValidationError`` if the assignment must be rejected. Writes nothing."""
        cycle = self.would_create_cycle(user_id, candidate_manager_id)
        if cycle.is_cycle:
            raise HierarchyValidationError(
                HierarchyValidationError.CIRCULAR_REFERENCE,
                f"assigning {candidate_manager_id!r} as manager of {user_id!r} would create a cycle",
                cycle.path,
            )

        depth = self.depth_if_assigned(user_id, candidate_manager_id)
        if depth > self._max_depth:
            raise HierarchyValidationError(
                HierarchyValidationError.DEPTH_EXCEEDED,
                f"hierarchy depth would exceed the limit ({self._max_depth})",
                (user_id, candidate_manager_id),
            )
