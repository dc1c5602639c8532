"""Backend clients for provisioning, builds and service revisions."""

from .base import (
    BuildBackend,
    BuildRecord,
    DefinitionReport,
    NoOpSignal,
    OperationHandle,
    OperationKind,
    Outcome,
    OutcomeStatus,
    ProvisioningClient,
    ServiceRevisionBackend,
)
from .cloudformation import CloudFormationClient, DEFAULT_TEMPLATES_DIR
from .codebuild import CodeBuildClient
from .ecs import ECSServiceClient

__all__ = [
    'BuildBackend',
    'BuildRecord',
    'DefinitionReport',
    'NoOpSignal',
    'OperationHandle',
    'OperationKind',
    'Outcome',
    'OutcomeStatus',
    'ProvisioningClient',
    'ServiceRevisionBackend',
    'CloudFormationClient',
    'DEFAULT_TEMPLATES_DIR',
    'CodeBuildClient',
    'ECSServiceClient',
]
