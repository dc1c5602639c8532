"""AWS client management and the per-invocation execution context."""

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError, NoCredentialsError, PartialCredentialsError
from typing import Optional, Dict, Any
from dataclasses import dataclass, field
from fargate_deploy.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_REGION = 'us-east-1'


@dataclass
class AWSCredentials:
    """AWS credential information."""
    account_id: str
    user_arn: str
    user_id: str
    region: str
    profile: Optional[str] = None


class AWSClientManager:
    """Manages boto3 sessions and clients with credential management."""

    def __init__(
        self,
        profile: Optional[str] = None,
        region: Optional[str] = None,
        max_pool_connections: int = 10
    ):
        """Initialize AWS client manager.

        Args:
            profile: AWS profile name to use
            region: AWS region to use
            max_pool_connections: Maximum number of connections in the connection pool
        """
        self.profile = profile
        self.region = region
        self._session: Optional[boto3.Session] = None
        self._clients: Dict[str, Any] = {}
        self._credentials: Optional[AWSCredentials] = None

        # Transport-level retries only cover throttling/5xx on individual API
        # calls; stack operations themselves are never re-issued.
        self._boto_config = Config(
            max_pool_connections=max_pool_connections,
            retries={
                'mode': 'standard',
                'max_attempts': 5
            },
            connect_timeout=10,
            read_timeout=60
        )

    @property
    def session(self) -> boto3.Session:
        """Get or create boto3 session.

        Falls back to us-east-1 when neither the caller nor the profile
        names a region.
        """
        if self._session is None:
            kwargs = {}
            if self.profile:
                kwargs['profile_name'] = self.profile
            if self.region:
                kwargs['region_name'] = self.region

            session = boto3.Session(**kwargs)
            if not session.region_name:
                kwargs['region_name'] = DEFAULT_REGION
                session = boto3.Session(**kwargs)

            self._session = session
            logger.info(f"Created AWS session - Region: {self._session.region_name}, "
                        f"Profile: {self.profile or 'default'}")

        return self._session

    def get_client(self, service_name: str):
        """Get a cached boto3 client for a service.

        Args:
            service_name: AWS service name (e.g., 'cloudformation', 'ecs')

        Returns:
            Boto3 client for the service
        """
        if service_name in self._clients:
            return self._clients[service_name]

        client = self.session.client(service_name, config=self._boto_config)
        self._clients[service_name] = client

        logger.debug(f"Created {service_name} client")

        return client

    def validate_credentials(self) -> AWSCredentials:
        """Validate AWS credentials and return credential information.

        Raises:
            NoCredentialsError: If no credentials are found
            PartialCredentialsError: If credentials are incomplete
            ClientError: If credentials are invalid
        """
        if self._credentials is not None:
            return self._credentials

        try:
            identity = self.get_client('sts').get_caller_identity()
        except (NoCredentialsError, PartialCredentialsError):
            logger.error("No usable AWS credentials found. Configure them using "
                         "AWS CLI, environment variables, or an IAM role.")
            raise
        except ClientError as e:
            logger.error(f"Failed to validate AWS credentials: {e}")
            raise

        self._credentials = AWSCredentials(
            account_id=identity['Account'],
            user_arn=identity['Arn'],
            user_id=identity['UserId'],
            region=self.session.region_name,
            profile=self.profile
        )

        logger.info(f"AWS credentials validated - Account: {self._credentials.account_id}, "
                    f"User: {self._credentials.user_arn}")

        return self._credentials

    def get_region(self) -> str:
        """Get the AWS region."""
        return self.session.region_name


@dataclass(frozen=True)
class ExecutionContext:
    """Immutable per-invocation context handed to every backend client.

    Replaces ambient shell state (current profile, configured region) with
    an explicit value built once per command.
    """
    environment: str
    region: str
    profile: Optional[str] = None
    clients: Optional[AWSClientManager] = field(default=None, compare=False, repr=False)

    @classmethod
    def create(
        cls,
        environment: str,
        profile: Optional[str] = None,
        region: Optional[str] = None
    ) -> 'ExecutionContext':
        """Build a context backed by a fresh AWSClientManager."""
        manager = AWSClientManager(profile=profile, region=region)
        return cls(
            environment=environment,
            region=manager.get_region(),
            profile=profile,
            clients=manager
        )

    def client(self, service_name: str):
        """Shortcut for a boto3 client bound to this context's session."""
        if self.clients is None:
            raise RuntimeError("ExecutionContext has no AWS client manager")
        return self.clients.get_client(service_name)
