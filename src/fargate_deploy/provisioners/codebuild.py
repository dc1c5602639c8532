"""CodeBuild-backed build backend."""

from botocore.exceptions import ClientError

from fargate_deploy.provisioners.base import BuildBackend, BuildRecord
from fargate_deploy.utils.aws_client import ExecutionContext
from fargate_deploy.utils.errors import BuildStartError, ErrorContext, error_handler
from fargate_deploy.utils.logging import get_logger

logger = get_logger(__name__)


class CodeBuildClient(BuildBackend):
    """Starts and inspects CodeBuild builds."""

    def __init__(self, context: ExecutionContext, client=None):
        """Initialize the client.

        Args:
            context: Execution context supplying the AWS session
            client: Pre-built boto3 CodeBuild client (defaults to the context's)
        """
        self.context = context
        self.codebuild = client or context.client("codebuild")

    def start_build(self, project_id: str) -> BuildRecord:
        try:
            response = self.codebuild.start_build(projectName=project_id)
        except ClientError as e:
            message = e.response.get("Error", {}).get("Message", str(e))
            raise BuildStartError(
                f"Failed to start build for {project_id}: {message}",
                context=ErrorContext(operation="start_build", aws_service="codebuild"),
                cause=e,
                suggestions=[f"Check that the CodeBuild project '{project_id}' exists"]
            ) from e

        build = response["build"]
        return BuildRecord(
            build_id=build["id"],
            status=build.get("buildStatus", "IN_PROGRESS"),
            logs_url=build.get("logs", {}).get("deepLink"),
        )

    def get_build(self, build_id: str) -> BuildRecord:
        try:
            response = self.codebuild.batch_get_builds(ids=[build_id])
        except ClientError as e:
            raise error_handler.handle_exception(
                e, ErrorContext(operation="batch_get_builds", aws_service="codebuild")
            ) from e

        builds = response.get("builds", [])
        if not builds:
            logger.warning(f"Build not found: {build_id}")
            return BuildRecord(build_id=build_id, status="UNKNOWN")

        build = builds[0]
        return BuildRecord(
            build_id=build_id,
            status=build.get("buildStatus", "UNKNOWN"),
            logs_url=build.get("logs", {}).get("deepLink"),
        )
