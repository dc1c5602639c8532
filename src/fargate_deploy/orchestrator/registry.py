"""Fixed, ordered set of infrastructure units that make up the stack."""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from fargate_deploy.orchestrator.dependency_graph import DependencyGraph
from fargate_deploy.utils.errors import UnitNotFoundError


@dataclass(frozen=True)
class InfrastructureUnit:
    """Static descriptor of one independently provisionable unit."""

    id: str
    definition_ref: str
    depends_on: Tuple[str, ...] = field(default_factory=tuple)
    description: str = ""


SERVICE_UNIT_ID = "service"
CLUSTER_UNIT_ID = "cluster"
BUILD_PROJECT_SUFFIX = "build"

# Edges record the outputs a unit consumes; ties keep declaration order.
CANONICAL_UNITS: Tuple[InfrastructureUnit, ...] = (
    InfrastructureUnit("ecr", "1-ecr.yaml", (), "ECR Repository"),
    InfrastructureUnit("codebuild", "2-codebuild.yaml", ("ecr",), "CodeBuild Project"),
    InfrastructureUnit("security", "3-security-groups.yaml", (), "Security Groups"),
    InfrastructureUnit("alb", "4-load-balancer.yaml", ("security",), "Application Load Balancer"),
    InfrastructureUnit("cluster", "5-ecs-cluster.yaml", (), "ECS Cluster"),
    InfrastructureUnit("task", "6-task-definition.yaml", ("ecr",), "Task Definition"),
    InfrastructureUnit(
        SERVICE_UNIT_ID,
        "7-ecs-service.yaml",
        ("task", "cluster", "alb", "security"),
        "ECS Service",
    ),
)


class UnitRegistry:
    """Holds the ordered unit list and answers dependency questions about it."""

    def __init__(self, units: Sequence[InfrastructureUnit] = CANONICAL_UNITS):
        """Build the registry and check its dependency graph.

        Raises:
            DependencyError: If the units form a cycle, reference unknown units,
                or depend on a unit declared after them
        """
        self._units: Dict[str, InfrastructureUnit] = {}
        self._graph = DependencyGraph()
        for unit in units:
            self._graph.add_unit(unit.id, list(unit.depends_on))
            self._units[unit.id] = unit

        self._order: Tuple[str, ...] = tuple(self._graph.topological_sort())

    def ordered_units(self) -> List[InfrastructureUnit]:
        """Units in dependency order; the same order on every call."""
        return [self._units[unit_id] for unit_id in self._order]

    def ids(self) -> List[str]:
        return list(self._order)

    def unit_by_id(self, unit_id: str) -> InfrastructureUnit:
        """Look up a unit.

        Raises:
            UnitNotFoundError: If no unit has that id
        """
        try:
            return self._units[unit_id]
        except KeyError:
            raise UnitNotFoundError(unit_id, known=self._order) from None

    def dependencies_of(self, unit_id: str) -> List[InfrastructureUnit]:
        """Transitive dependencies of a unit, in dependency order."""
        self.unit_by_id(unit_id)
        deps = self._graph.get_all_dependencies(unit_id)
        return [self._units[uid] for uid in self._order if uid in deps]

    def dependents_of(self, unit_id: str) -> List[InfrastructureUnit]:
        """Transitive dependents of a unit, in dependency order."""
        self.unit_by_id(unit_id)
        dependents = self._graph.get_all_dependents(unit_id)
        return [self._units[uid] for uid in self._order if uid in dependents]

    def reverse_order(self, unit_ids: Optional[Iterable[str]] = None) -> List[InfrastructureUnit]:
        """Units in teardown order, optionally restricted to ``unit_ids``.

        Raises:
            UnitNotFoundError: If any requested id is unknown
        """
        if unit_ids is None:
            selected: Set[str] = set(self._order)
        else:
            selected = {self.unit_by_id(uid).id for uid in unit_ids}
        return [self._units[uid] for uid in reversed(self._order) if uid in selected]

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, unit_id: object) -> bool:
        return unit_id in self._units
