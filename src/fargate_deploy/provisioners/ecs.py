"""ECS-backed service revision backend."""

from typing import List

from botocore.exceptions import ClientError

from fargate_deploy.provisioners.base import ServiceRevisionBackend
from fargate_deploy.utils.aws_client import ExecutionContext
from fargate_deploy.utils.errors import (
    ErrorContext,
    ProvisioningError,
    UpdateFailedError,
    error_handler,
)
from fargate_deploy.utils.logging import get_logger

logger = get_logger(__name__)

# ECS caps list_task_definitions at 100 results per page
LIST_PAGE_SIZE = 100


class ECSServiceClient(ServiceRevisionBackend):
    """Task-definition revisions of an ECS service."""

    def __init__(self, context: ExecutionContext, client=None):
        """Initialize the client.

        Args:
            context: Execution context supplying the AWS session
            client: Pre-built boto3 ECS client (defaults to the context's)
        """
        self.context = context
        self.ecs = client or context.client("ecs")

    def _describe_service(self, cluster: str, service: str) -> dict:
        try:
            response = self.ecs.describe_services(cluster=cluster, services=[service])
        except ClientError as e:
            raise error_handler.handle_exception(
                e, ErrorContext(full_name=service, operation="describe_services", aws_service="ecs")
            ) from e

        services = response.get("services", [])
        if not services or services[0].get("status") == "INACTIVE":
            raise ProvisioningError(
                f"Service {service} not found in cluster {cluster}",
                context=ErrorContext(full_name=service, operation="describe_services"),
            )
        return services[0]

    def current_revision(self, cluster: str, service: str) -> str:
        return self._describe_service(cluster, service)["taskDefinition"]

    def recent_revisions(self, family: str, limit: int) -> List[str]:
        try:
            response = self.ecs.list_task_definitions(
                familyPrefix=family,
                sort="DESC",
                maxResults=LIST_PAGE_SIZE,
            )
        except ClientError as e:
            raise error_handler.handle_exception(
                e, ErrorContext(operation="list_task_definitions", aws_service="ecs")
            ) from e

        # familyPrefix also matches longer family names, keep exact matches only
        marker = f"task-definition/{family}:"
        arns = [arn for arn in response.get("taskDefinitionArns", []) if marker in arn]
        return arns[:limit]

    def pin_revision(self, cluster: str, service: str, revision: str) -> str:
        logger.info(f"Updating service {service} in {cluster} to {revision}")
        try:
            response = self.ecs.update_service(
                cluster=cluster,
                service=service,
                taskDefinition=revision,
            )
        except ClientError as e:
            reason = e.response.get("Error", {}).get("Message", str(e))
            raise UpdateFailedError(
                f"Failed to update service {service}: {reason}",
                reason=reason,
                context=ErrorContext(full_name=service, operation="update_service", aws_service="ecs"),
                cause=e
            ) from e
        return response["service"]["taskDefinition"]

    def is_stable(self, cluster: str, service: str) -> bool:
        svc = self._describe_service(cluster, service)
        deployments = svc.get("deployments", [])
        return len(deployments) == 1 and svc.get("runningCount") == svc.get("desiredCount")
