"""Utility modules for logging, AWS client management, errors and waiting."""

from fargate_deploy.utils.aws_client import AWSClientManager, AWSCredentials, ExecutionContext
from fargate_deploy.utils.waiter import Waiter, WaitTimeoutError
from fargate_deploy.utils.errors import (
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    DeploymentError,
    ConfigError,
    ConfigNotFoundError,
    ConfigSyntaxError,
    MissingRequiredKeyError,
    ValidationError,
    DependencyError,
    UnitNotFoundError,
    ProvisioningError,
    CreateFailedError,
    UpdateFailedError,
    DeleteFailedError,
    OperationTimeoutError,
    BuildError,
    BuildStartError,
    BuildFailedError,
    UserAbort,
    ErrorHandler,
    error_handler
)
from fargate_deploy.utils.logging import get_logger, setup_logging, LogContext

__all__ = [
    # AWS Client
    'AWSClientManager',
    'AWSCredentials',
    'ExecutionContext',

    # Waiting
    'Waiter',
    'WaitTimeoutError',

    # Errors
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'DeploymentError',
    'ConfigError',
    'ConfigNotFoundError',
    'ConfigSyntaxError',
    'MissingRequiredKeyError',
    'ValidationError',
    'DependencyError',
    'UnitNotFoundError',
    'ProvisioningError',
    'CreateFailedError',
    'UpdateFailedError',
    'DeleteFailedError',
    'OperationTimeoutError',
    'BuildError',
    'BuildStartError',
    'BuildFailedError',
    'UserAbort',
    'ErrorHandler',
    'error_handler',

    # Logging
    'get_logger',
    'setup_logging',
    'LogContext',
]
