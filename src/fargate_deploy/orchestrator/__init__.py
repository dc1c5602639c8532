"""Deployment orchestration: unit registry, ordered deploy, teardown and builds."""

from fargate_deploy.orchestrator.dependency_graph import DependencyGraph
from fargate_deploy.orchestrator.registry import (
    BUILD_PROJECT_SUFFIX,
    CANONICAL_UNITS,
    CLUSTER_UNIT_ID,
    SERVICE_UNIT_ID,
    InfrastructureUnit,
    UnitRegistry,
)
from fargate_deploy.orchestrator.build import BuildHandle, BuildStatus, BuildTrigger
from fargate_deploy.orchestrator.orchestrator import (
    DeployedUnitState,
    DeploymentOrchestrator,
    DeploymentResult,
    Operation,
    ProgressCallback,
    RunStatus,
    UnitStatus,
)
from fargate_deploy.orchestrator.rollback import (
    RevisionRollbackResult,
    RollbackController,
    TeardownResult,
    TeardownStatus,
    UnitTeardown,
)

__all__ = [
    'DependencyGraph',
    'BUILD_PROJECT_SUFFIX',
    'CANONICAL_UNITS',
    'CLUSTER_UNIT_ID',
    'SERVICE_UNIT_ID',
    'InfrastructureUnit',
    'UnitRegistry',
    'BuildHandle',
    'BuildStatus',
    'BuildTrigger',
    'DeployedUnitState',
    'DeploymentOrchestrator',
    'DeploymentResult',
    'Operation',
    'ProgressCallback',
    'RunStatus',
    'UnitStatus',
    'RevisionRollbackResult',
    'RollbackController',
    'TeardownResult',
    'TeardownStatus',
    'UnitTeardown',
]
