"""Tests for the ECS revision backend and the CodeBuild build backend."""

import boto3
import pytest
from botocore.stub import Stubber

from fargate_deploy.provisioners.codebuild import CodeBuildClient
from fargate_deploy.provisioners.ecs import ECSServiceClient
from fargate_deploy.utils.aws_client import ExecutionContext
from fargate_deploy.utils.errors import BuildStartError, ProvisioningError, UpdateFailedError

CLUSTER = "myapp-staging-cluster"
SERVICE = "myapp-staging-service"
FAMILY = "myapp-staging"


def arn(family, revision):
    return f"arn:aws:ecs:us-east-1:123456789012:task-definition/{family}:{revision}"


def boto_client(service):
    return boto3.client(
        service,
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing"
    )


@pytest.fixture
def context():
    return ExecutionContext(environment="staging", region="us-east-1")


class TestECSServiceClient:

    @pytest.fixture
    def ecs(self):
        return boto_client("ecs")

    @pytest.fixture
    def stubber(self, ecs):
        with Stubber(ecs) as stub:
            yield stub
            stub.assert_no_pending_responses()

    @pytest.fixture
    def backend(self, context, ecs):
        return ECSServiceClient(context, client=ecs)

    def test_current_revision(self, backend, stubber):
        stubber.add_response(
            "describe_services",
            {"services": [{"serviceName": SERVICE, "status": "ACTIVE", "taskDefinition": arn(FAMILY, 7)}]},
            {"cluster": CLUSTER, "services": [SERVICE]}
        )
        assert backend.current_revision(CLUSTER, SERVICE) == arn(FAMILY, 7)

    def test_inactive_service_is_an_error(self, backend, stubber):
        stubber.add_response("describe_services", {"services": [{"serviceName": SERVICE, "status": "INACTIVE"}]})
        with pytest.raises(ProvisioningError, match="not found"):
            backend.current_revision(CLUSTER, SERVICE)

    def test_recent_revisions_keep_exact_family(self, backend, stubber):
        stubber.add_response(
            "list_task_definitions",
            {"taskDefinitionArns": [
                arn("myapp-staging-worker", 9),
                arn(FAMILY, 7),
                arn(FAMILY, 6),
                arn(FAMILY, 5),
            ]},
            {"familyPrefix": FAMILY, "sort": "DESC", "maxResults": 100}
        )

        assert backend.recent_revisions(FAMILY, 2) == [arn(FAMILY, 7), arn(FAMILY, 6)]

    def test_pin_revision(self, backend, stubber):
        stubber.add_response(
            "update_service",
            {"service": {"serviceName": SERVICE, "taskDefinition": arn(FAMILY, 5)}},
            {"cluster": CLUSTER, "service": SERVICE, "taskDefinition": f"{FAMILY}:5"}
        )
        assert backend.pin_revision(CLUSTER, SERVICE, f"{FAMILY}:5") == arn(FAMILY, 5)

    def test_pin_revision_rejected(self, backend, stubber):
        stubber.add_client_error(
            "update_service",
            service_error_code="InvalidParameterException",
            service_message="Unable to find task definition"
        )
        with pytest.raises(UpdateFailedError) as exc_info:
            backend.pin_revision(CLUSTER, SERVICE, f"{FAMILY}:99")
        assert exc_info.value.reason == "Unable to find task definition"

    @pytest.mark.parametrize("deployments,running,expected", [
        ([{"id": "a"}], 2, True),
        ([{"id": "a"}, {"id": "b"}], 2, False),
        ([{"id": "a"}], 1, False),
    ])
    def test_is_stable(self, backend, stubber, deployments, running, expected):
        stubber.add_response("describe_services", {"services": [{
            "serviceName": SERVICE,
            "status": "ACTIVE",
            "desiredCount": 2,
            "runningCount": running,
            "deployments": deployments,
        }]})
        assert backend.is_stable(CLUSTER, SERVICE) is expected


class TestCodeBuildClient:

    @pytest.fixture
    def codebuild(self):
        return boto_client("codebuild")

    @pytest.fixture
    def stubber(self, codebuild):
        with Stubber(codebuild) as stub:
            yield stub
            stub.assert_no_pending_responses()

    @pytest.fixture
    def backend(self, context, codebuild):
        return CodeBuildClient(context, client=codebuild)

    def test_start_build(self, backend, stubber):
        stubber.add_response(
            "start_build",
            {"build": {"id": "myapp-staging-build:1234", "buildStatus": "IN_PROGRESS"}},
            {"projectName": "myapp-staging-build"}
        )

        record = backend.start_build("myapp-staging-build")

        assert record.build_id == "myapp-staging-build:1234"
        assert record.status == "IN_PROGRESS"
        assert record.logs_url is None

    def test_start_build_missing_project(self, backend, stubber):
        stubber.add_client_error(
            "start_build",
            service_error_code="ResourceNotFoundException",
            service_message="Project cannot be found"
        )
        with pytest.raises(BuildStartError, match="Project cannot be found"):
            backend.start_build("myapp-staging-build")

    def test_get_build(self, backend, stubber):
        stubber.add_response(
            "batch_get_builds",
            {"builds": [{
                "id": "b-1",
                "buildStatus": "SUCCEEDED",
                "logs": {"deepLink": "https://console.aws.amazon.com/cloudwatch/logs/b-1"},
            }]},
            {"ids": ["b-1"]}
        )

        record = backend.get_build("b-1")

        assert record.status == "SUCCEEDED"
        assert record.logs_url.endswith("/b-1")

    def test_unknown_build(self, backend, stubber):
        stubber.add_response("batch_get_builds", {"builds": [], "buildsNotFound": ["b-1"]})
        assert backend.get_build("b-1").status == "UNKNOWN"
