"""Dependency graph over infrastructure units."""

import heapq
from typing import Dict, List, Set, Optional
from dataclasses import dataclass
from collections import defaultdict, deque

from fargate_deploy.utils.errors import DependencyError, ErrorContext


@dataclass
class DependencyNode:
    """Node in the dependency graph."""

    unit_id: str
    position: int  # Index in the declared order
    dependencies: Set[str]  # Unit IDs this node depends on


class DependencyGraph:
    """Directed acyclic graph (DAG) of unit dependencies.

    Nodes remember the position they were declared in; that position breaks
    ties in ``topological_sort`` so the order is identical on every call, and
    ``validate`` rejects any edge pointing at a later-declared unit.
    """

    def __init__(self):
        """Initialize empty dependency graph."""
        self.nodes: Dict[str, DependencyNode] = {}
        self._adjacency_list: Dict[str, Set[str]] = defaultdict(set)

    def add_unit(self, unit_id: str, dependencies: List[str]) -> None:
        """Add a unit to the graph.

        Args:
            unit_id: Stable unit identifier
            dependencies: Unit IDs this unit depends on
        """
        if unit_id in self.nodes:
            raise DependencyError(
                f"Unit '{unit_id}' declared more than once",
                context=ErrorContext(unit_id=unit_id)
            )

        self.nodes[unit_id] = DependencyNode(
            unit_id=unit_id,
            position=len(self.nodes),
            dependencies=set(dependencies)
        )
        for dep_id in dependencies:
            self._adjacency_list[dep_id].add(unit_id)

    def get_all_dependencies(self, unit_id: str) -> Set[str]:
        """Get all transitive dependencies of a unit.

        Args:
            unit_id: ID of unit

        Returns:
            Set of all unit IDs in the dependency chain
        """
        visited = set()
        queue = deque([unit_id])

        while queue:
            current_id = queue.popleft()
            if current_id in visited:
                continue

            visited.add(current_id)

            if current_id in self.nodes:
                for dep_id in self.nodes[current_id].dependencies:
                    if dep_id not in visited:
                        queue.append(dep_id)

        visited.discard(unit_id)
        return visited

    def get_all_dependents(self, unit_id: str) -> Set[str]:
        """Get all transitive dependents of a unit.

        Args:
            unit_id: ID of unit

        Returns:
            Set of all unit IDs that depend on this unit
        """
        visited = set()
        queue = deque([unit_id])

        while queue:
            current_id = queue.popleft()
            if current_id in visited:
                continue

            visited.add(current_id)

            for dependent_id in self._adjacency_list[current_id]:
                if dependent_id not in visited:
                    queue.append(dependent_id)

        visited.discard(unit_id)
        return visited

    def detect_circular_dependencies(self) -> Optional[List[str]]:
        """Detect circular dependencies in the graph.

        Returns:
            List of unit IDs forming a cycle, or None if no cycle exists
        """
        # White (0): unvisited, Gray (1): visiting, Black (2): visited
        color = {node_id: 0 for node_id in self.nodes}
        parent = {}

        def dfs(node_id: str) -> Optional[List[str]]:
            color[node_id] = 1

            for dependent_id in sorted(self._adjacency_list[node_id]):
                if dependent_id not in color:
                    continue
                if color[dependent_id] == 1:
                    cycle = [dependent_id]
                    current = node_id
                    while current != dependent_id:
                        cycle.append(current)
                        current = parent.get(current)
                        if current is None:
                            break
                    cycle.append(dependent_id)
                    return list(reversed(cycle))

                if color[dependent_id] == 0:
                    parent[dependent_id] = node_id
                    cycle = dfs(dependent_id)
                    if cycle:
                        return cycle

            color[node_id] = 2
            return None

        for node_id in self.nodes:
            if color[node_id] == 0:
                cycle = dfs(node_id)
                if cycle:
                    return cycle

        return None

    def validate(self) -> None:
        """Validate the dependency graph.

        Raises:
            DependencyError: On cycles, unknown targets or edges to later-declared units
        """
        cycle = self.detect_circular_dependencies()
        if cycle:
            cycle_str = " -> ".join(cycle)
            raise DependencyError(
                f"Circular dependency detected: {cycle_str}",
                context=ErrorContext(unit_id=cycle[0])
            )

        for node_id, node in self.nodes.items():
            for dep_id in sorted(node.dependencies):
                if dep_id not in self.nodes:
                    raise DependencyError(
                        f"Unit '{node_id}' depends on '{dep_id}' which does not exist",
                        context=ErrorContext(unit_id=node_id)
                    )
                if self.nodes[dep_id].position >= node.position:
                    raise DependencyError(
                        f"Unit '{node_id}' depends on '{dep_id}' which is declared after it",
                        context=ErrorContext(unit_id=node_id)
                    )

    def topological_sort(self) -> List[str]:
        """Perform topological sort on the dependency graph.

        Returns:
            List of unit IDs in dependency order (dependencies before dependents)

        Raises:
            DependencyError: If graph is invalid
        """
        self.validate()

        # Kahn's algorithm, ready nodes taken in declaration order
        in_degree = {node_id: len(node.dependencies) for node_id, node in self.nodes.items()}
        ready = [(node.position, node_id) for node_id, node in self.nodes.items() if not node.dependencies]
        heapq.heapify(ready)
        result = []

        while ready:
            _, node_id = heapq.heappop(ready)
            result.append(node_id)

            for dependent_id in self._adjacency_list[node_id]:
                in_degree[dependent_id] -= 1
                if in_degree[dependent_id] == 0:
                    heapq.heappush(ready, (self.nodes[dependent_id].position, dependent_id))

        if len(result) != len(self.nodes):
            raise DependencyError("Cannot perform topological sort: graph contains cycles")

        return result
