"""Tests for the unit registry and its dependency graph."""

import pytest

from fargate_deploy.orchestrator.dependency_graph import DependencyGraph
from fargate_deploy.orchestrator.registry import (
    CANONICAL_UNITS,
    InfrastructureUnit,
    UnitRegistry,
)
from fargate_deploy.utils.errors import DependencyError, UnitNotFoundError

CANONICAL_ORDER = ["ecr", "codebuild", "security", "alb", "cluster", "task", "service"]


class TestCanonicalRegistry:

    @pytest.fixture
    def registry(self):
        return UnitRegistry()

    def test_ordered_units_follow_the_stack(self, registry):
        assert [u.id for u in registry.ordered_units()] == CANONICAL_ORDER
        assert [u.definition_ref for u in registry.ordered_units()] == [
            "1-ecr.yaml",
            "2-codebuild.yaml",
            "3-security-groups.yaml",
            "4-load-balancer.yaml",
            "5-ecs-cluster.yaml",
            "6-task-definition.yaml",
            "7-ecs-service.yaml",
        ]

    def test_order_is_stable_across_calls(self, registry):
        first = registry.ordered_units()
        for _ in range(5):
            assert registry.ordered_units() == first
        assert UnitRegistry().ids() == registry.ids()

    def test_every_dependency_precedes_its_dependent(self, registry):
        position = {uid: i for i, uid in enumerate(registry.ids())}
        for unit in registry.ordered_units():
            for dep in unit.depends_on:
                assert position[dep] < position[unit.id]

    def test_unit_by_id(self, registry):
        unit = registry.unit_by_id("alb")
        assert unit.definition_ref == "4-load-balancer.yaml"
        assert unit.description == "Application Load Balancer"

    def test_unknown_unit(self, registry):
        with pytest.raises(UnitNotFoundError) as exc_info:
            registry.unit_by_id("database")
        assert exc_info.value.requested_id == "database"
        assert "ecr" in str(exc_info.value)

    def test_reverse_order(self, registry):
        assert [u.id for u in registry.reverse_order()] == list(reversed(CANONICAL_ORDER))

    def test_reverse_order_of_subset_keeps_teardown_order(self, registry):
        assert [u.id for u in registry.reverse_order(["ecr", "service", "alb"])] == ["service", "alb", "ecr"]

    def test_reverse_order_rejects_unknown_ids(self, registry):
        with pytest.raises(UnitNotFoundError):
            registry.reverse_order(["alb", "nope"])

    def test_transitive_dependencies(self, registry):
        assert [u.id for u in registry.dependencies_of("alb")] == ["security"]
        assert [u.id for u in registry.dependencies_of("service")] == ["ecr", "security", "alb", "cluster", "task"]
        assert registry.dependencies_of("ecr") == []

    def test_transitive_dependents(self, registry):
        assert [u.id for u in registry.dependents_of("cluster")] == ["service"]
        assert [u.id for u in registry.dependents_of("ecr")] == ["codebuild", "task", "service"]
        assert registry.dependents_of("service") == []

    def test_membership_and_length(self, registry):
        assert len(registry) == len(CANONICAL_UNITS)
        assert "task" in registry
        assert "database" not in registry


class TestRegistryValidation:

    def test_cycle_is_rejected(self):
        units = [
            InfrastructureUnit("a", "a.yaml", ("b",)),
            InfrastructureUnit("b", "b.yaml", ("a",)),
        ]
        with pytest.raises(DependencyError, match="Circular dependency"):
            UnitRegistry(units)

    def test_dependency_on_later_unit_is_rejected(self):
        units = [
            InfrastructureUnit("a", "a.yaml", ("b",)),
            InfrastructureUnit("b", "b.yaml"),
        ]
        with pytest.raises(DependencyError, match="declared after"):
            UnitRegistry(units)

    def test_unknown_dependency_is_rejected(self):
        units = [InfrastructureUnit("a", "a.yaml", ("ghost",))]
        with pytest.raises(DependencyError, match="does not exist"):
            UnitRegistry(units)

    def test_duplicate_ids_are_rejected(self):
        units = [InfrastructureUnit("a", "a.yaml"), InfrastructureUnit("a", "b.yaml")]
        with pytest.raises(DependencyError, match="more than once"):
            UnitRegistry(units)


class TestDependencyGraph:

    def test_ties_are_broken_by_declaration_order(self):
        graph = DependencyGraph()
        graph.add_unit("b", [])
        graph.add_unit("a", [])
        graph.add_unit("c", ["a"])
        graph.add_unit("d", ["b"])

        assert graph.topological_sort() == ["b", "a", "c", "d"]

    def test_detects_cycle_path(self):
        graph = DependencyGraph()
        graph.add_unit("x", ["z"])
        graph.add_unit("y", ["x"])
        graph.add_unit("z", ["y"])

        cycle = graph.detect_circular_dependencies()
        assert cycle is not None
        assert set(cycle) == {"x", "y", "z"}
        assert cycle[0] == cycle[-1]

    def test_acyclic_graph_has_no_cycle(self):
        graph = DependencyGraph()
        graph.add_unit("x", [])
        graph.add_unit("y", ["x"])
        assert graph.detect_circular_dependencies() is None
        assert graph.get_all_dependents("x") == {"y"}
        assert graph.get_all_dependencies("y") == {"x"}
