"""Error types raised by the deployment tool and translation of AWS errors."""

from typing import Optional, Dict, Any, List, Sequence, Tuple
from enum import Enum
from dataclasses import asdict, dataclass
from botocore.exceptions import (
    ClientError,
    ConnectionError as AWSConnectionError,
    HTTPClientError,
    NoCredentialsError,
    PartialCredentialsError,
)
from fargate_deploy.utils.logging import get_logger

logger = get_logger(__name__)

# botocore transport failures and their builtin counterparts
_NETWORK_ERRORS = (AWSConnectionError, HTTPClientError, ConnectionError, TimeoutError)


class ErrorCategory(Enum):
    """Categories of errors that can occur during deployment."""
    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    DEPENDENCY = "dependency"
    PROVISIONING = "provisioning"
    BUILD = "build"
    USER_ABORT = "user_abort"
    AWS = "aws"
    CREDENTIAL = "credential"
    PERMISSION = "permission"
    NETWORK = "network"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    CRITICAL = "critical"  # Run cannot continue
    ERROR = "error"  # Unit failed, run aborted at this unit
    WARNING = "warning"  # Non-fatal issue
    INFO = "info"  # Informational message


@dataclass
class ErrorContext:
    """Context information for an error."""
    unit_id: Optional[str] = None
    full_name: Optional[str] = None
    operation: Optional[str] = None
    aws_service: Optional[str] = None
    request_id: Optional[str] = None


class DeploymentError(Exception):
    """Base exception for deployment errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        suggestions: Optional[List[str]] = None
    ):
        """Initialize deployment error.

        Args:
            message: Human-readable error message
            category: Error category
            severity: Error severity
            context: Additional context about the error
            cause: Original exception that caused this error
            suggestions: List of suggested fixes
        """
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.cause = cause
        self.suggestions = suggestions or []

    @property
    def unit_id(self) -> Optional[str]:
        return self.context.unit_id

    def to_user_message(self) -> str:
        """Convert error to user-friendly message.

        Returns:
            Formatted error message for display to user
        """
        lines = [f"{self.severity.value.upper()}: {self.message}"]

        if self.context.unit_id:
            lines.append(f"   Unit: {self.context.unit_id}")
        if self.context.full_name:
            lines.append(f"   Stack: {self.context.full_name}")
        if self.context.operation:
            lines.append(f"   Operation: {self.context.operation}")

        if self.cause:
            lines.append(f"   Cause: {str(self.cause)}")

        if self.suggestions:
            lines.append("\nSuggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization.

        Returns:
            Dictionary representation of the error
        """
        return {
            'type': type(self).__name__,
            'message': self.message,
            'category': self.category.value,
            'severity': self.severity.value,
            'context': {k: v for k, v in asdict(self.context).items() if v is not None},
            'cause': str(self.cause) if self.cause else None,
            'suggestions': self.suggestions
        }


class ConfigError(DeploymentError):
    """Error in the per-environment configuration source."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault('severity', ErrorSeverity.CRITICAL)
        super().__init__(message, category=ErrorCategory.CONFIGURATION, **kwargs)


class ConfigNotFoundError(ConfigError):
    """No configuration source exists for the environment."""

    def __init__(self, environment: str, searched: Sequence[str], **kwargs):
        self.environment = environment
        self.searched = list(searched)
        kwargs.setdefault('suggestions', [
            f"Create it from the example: cp {self.searched[0]}.example {self.searched[0]}"
        ] if self.searched else [])
        super().__init__(
            f"No configuration found for environment '{environment}' "
            f"(looked for: {', '.join(self.searched)})",
            **kwargs
        )


class ConfigSyntaxError(ConfigError):
    """Configuration source cannot be parsed as key/value data."""

    def __init__(self, path: str, detail: str, **kwargs):
        self.path = path
        self.detail = detail
        super().__init__(f"Invalid configuration syntax in {path}: {detail}", **kwargs)


class MissingRequiredKeyError(ConfigError):
    """One or more required configuration keys are absent or empty."""

    def __init__(self, keys: Sequence[str], path: Optional[str] = None, **kwargs):
        self.keys = list(keys)
        self.path = path
        where = f" in {path}" if path else ""
        kwargs.setdefault('suggestions', [
            f"Add a non-empty value for '{key}'" for key in self.keys
        ])
        super().__init__(
            f"Missing required configuration key(s){where}: {', '.join(self.keys)}",
            **kwargs
        )


class ValidationError(DeploymentError):
    """A unit definition failed its syntax/schema check."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, category=ErrorCategory.VALIDATION, **kwargs)


class DependencyError(DeploymentError):
    """A unit's declared dependencies are not satisfied, or the graph is malformed."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, category=ErrorCategory.DEPENDENCY, **kwargs)


class UnitNotFoundError(DeploymentError):
    """Unknown infrastructure unit identifier."""

    def __init__(self, unit_id: str, known: Sequence[str] = (), **kwargs):
        self.requested_id = unit_id
        message = f"Unknown unit: {unit_id}"
        if known:
            message += f" (valid units: {', '.join(known)})"
        super().__init__(message, category=ErrorCategory.VALIDATION, **kwargs)


class ProvisioningError(DeploymentError):
    """Error during a backend create/update/delete operation."""

    def __init__(self, message: str, reason: Optional[str] = None, **kwargs):
        self.reason = reason
        super().__init__(message, category=ErrorCategory.PROVISIONING, **kwargs)


class CreateFailedError(ProvisioningError):
    """Backend reported a failed create."""


class UpdateFailedError(ProvisioningError):
    """Backend reported a failed update."""


class DeleteFailedError(ProvisioningError):
    """Backend reported a failed delete."""


class OperationTimeoutError(ProvisioningError):
    """Backend operation did not reach a terminal state in time."""


class BuildError(DeploymentError):
    """Error starting or running the external build."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, category=ErrorCategory.BUILD, **kwargs)


class BuildStartError(BuildError):
    """The build could not be started."""


class BuildFailedError(BuildError):
    """The build finished unsuccessfully."""


class UserAbort(DeploymentError):
    """Operator declined a confirmation prompt."""

    def __init__(self, message: str = "Operation cancelled by user", **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.USER_ABORT,
            severity=ErrorSeverity.INFO,
            **kwargs
        )


@dataclass(frozen=True)
class AWSErrorHint:
    """How a known AWS error code is reported to the operator."""
    category: ErrorCategory
    summary: str
    suggestions: Tuple[str, ...] = ()
    severity: ErrorSeverity = ErrorSeverity.ERROR


_CREDENTIAL_HINT = AWSErrorHint(
    ErrorCategory.CREDENTIAL,
    'AWS credentials are invalid or expired',
    (
        'Verify credentials using: aws sts get-caller-identity',
        'Pass --profile to pick a different named profile',
    ),
    ErrorSeverity.CRITICAL,
)

_PERMISSION_HINT = AWSErrorHint(
    ErrorCategory.PERMISSION,
    'Access denied',
    (
        'Check the IAM policies attached to your user or role',
        'Stacks in this project create named IAM roles and need CAPABILITY_NAMED_IAM',
    ),
)

_THROTTLING_HINT = AWSErrorHint(
    ErrorCategory.NETWORK,
    'AWS is throttling requests',
    ('Wait a minute and re-run the command; completed stacks are left in place',),
)


class ErrorHandler:
    """Turns exceptions raised by boto3 and the network stack into DeploymentErrors."""

    AWS_ERROR_HINTS: Dict[str, AWSErrorHint] = {
        'InvalidClientTokenId': _CREDENTIAL_HINT,
        'UnrecognizedClientException': _CREDENTIAL_HINT,
        'ExpiredToken': _CREDENTIAL_HINT,
        'ExpiredTokenException': _CREDENTIAL_HINT,
        'AccessDenied': _PERMISSION_HINT,
        'AccessDeniedException': _PERMISSION_HINT,
        'Throttling': _THROTTLING_HINT,
        'ThrottlingException': _THROTTLING_HINT,
        'InsufficientCapabilitiesException': AWSErrorHint(
            ErrorCategory.PERMISSION,
            'Template requires capabilities that were not granted',
            ('Named IAM resources need CAPABILITY_NAMED_IAM',),
        ),
        'ValidationError': AWSErrorHint(
            ErrorCategory.VALIDATION,
            'CloudFormation rejected the request',
            ('Check that every template parameter has a value in the parameter file',),
        ),
        'AlreadyExistsException': AWSErrorHint(
            ErrorCategory.PROVISIONING,
            'A stack with this name already exists',
            ('Run deploy again; existing stacks are updated rather than created',),
        ),
        'LimitExceededException': AWSErrorHint(
            ErrorCategory.PROVISIONING,
            'An AWS account limit was reached',
            ('Delete unused stacks or request a limit increase',),
        ),
        'ResourceNotFoundException': AWSErrorHint(
            ErrorCategory.PROVISIONING,
            'Resource not found',
            ("Check that the 'codebuild' stack has been deployed in this region",),
        ),
        'ClusterNotFoundException': AWSErrorHint(
            ErrorCategory.PROVISIONING,
            'ECS cluster not found',
            ("Deploy the 'cluster' unit first",),
        ),
        'ServiceNotFoundException': AWSErrorHint(
            ErrorCategory.PROVISIONING,
            'ECS service not found',
            ("Deploy the 'service' unit first",),
        ),
        'InvalidParameterException': AWSErrorHint(
            ErrorCategory.VALIDATION,
            'Invalid parameter value',
            ('Check the revision or name passed to the command',),
        ),
    }

    def handle_exception(
        self,
        error: Exception,
        context: Optional[ErrorContext] = None
    ) -> DeploymentError:
        """Convert any exception into a DeploymentError.

        DeploymentErrors pass through unchanged.

        Args:
            error: The exception to convert
            context: Where the error occurred

        Returns:
            DeploymentError with a category and suggested fixes
        """
        if isinstance(error, DeploymentError):
            return error

        context = context or ErrorContext()

        if isinstance(error, ClientError):
            return self._from_client_error(error, context)

        if isinstance(error, NoCredentialsError):
            return DeploymentError(
                'No AWS credentials found',
                category=ErrorCategory.CREDENTIAL,
                severity=ErrorSeverity.CRITICAL,
                context=context,
                cause=error,
                suggestions=['Configure credentials with: aws configure', 'Or pass --profile']
            )

        if isinstance(error, PartialCredentialsError):
            return DeploymentError(
                'Incomplete AWS credentials',
                category=ErrorCategory.CREDENTIAL,
                severity=ErrorSeverity.CRITICAL,
                context=context,
                cause=error,
                suggestions=['Provide both an access key ID and a secret access key']
            )

        if isinstance(error, _NETWORK_ERRORS):
            return DeploymentError(
                f'Network error: {error}',
                category=ErrorCategory.NETWORK,
                context=context,
                cause=error,
                suggestions=['Check your connection and the --region value']
            )

        logger.debug(f"Unclassified error {type(error).__name__}: {error}")
        return DeploymentError(
            str(error) or type(error).__name__,
            context=context,
            cause=error,
            suggestions=['Re-run with --log-level debug for details']
        )

    def _from_client_error(self, error: ClientError, context: ErrorContext) -> DeploymentError:
        details = error.response.get('Error', {})
        code = details.get('Code', 'Unknown')
        message = details.get('Message', str(error))
        context.request_id = error.response.get('ResponseMetadata', {}).get('RequestId')

        hint = self.AWS_ERROR_HINTS.get(code)
        if hint is None:
            return DeploymentError(
                f"AWS error ({code}): {message}",
                category=ErrorCategory.AWS,
                context=context,
                cause=error,
                suggestions=[f"AWS request ID: {context.request_id}"] if context.request_id else []
            )

        return DeploymentError(
            f"{hint.summary}: {message}",
            category=hint.category,
            severity=hint.severity,
            context=context,
            cause=error,
            suggestions=list(hint.suggestions)
        )


# Shared instance
error_handler = ErrorHandler()
