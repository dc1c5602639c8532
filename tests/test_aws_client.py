"""Tests for AWS session handling and the execution context."""

import pytest
from botocore.stub import Stubber

from fargate_deploy.utils.aws_client import DEFAULT_REGION, AWSClientManager, ExecutionContext


@pytest.fixture(autouse=True)
def isolated_aws_env(monkeypatch, tmp_path):
    for name in ("AWS_PROFILE", "AWS_DEFAULT_PROFILE", "AWS_REGION", "AWS_DEFAULT_REGION"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("AWS_CONFIG_FILE", str(tmp_path / "config"))
    monkeypatch.setenv("AWS_SHARED_CREDENTIALS_FILE", str(tmp_path / "credentials"))
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")


def test_region_falls_back_to_default():
    assert AWSClientManager().get_region() == DEFAULT_REGION


def test_explicit_region_wins():
    assert AWSClientManager(region="eu-west-1").get_region() == "eu-west-1"


def test_clients_are_cached():
    manager = AWSClientManager(region="us-west-2")

    client = manager.get_client("cloudformation")

    assert manager.get_client("cloudformation") is client
    assert client.meta.region_name == "us-west-2"


def test_validate_credentials_reads_caller_identity():
    manager = AWSClientManager(region="us-east-1")
    sts = manager.get_client("sts")

    with Stubber(sts) as stubber:
        stubber.add_response("get_caller_identity", {
            "Account": "123456789012",
            "Arn": "arn:aws:iam::123456789012:user/deployer",
            "UserId": "AIDAEXAMPLE",
        })
        identity = manager.validate_credentials()
        # Cached after the first call
        assert manager.validate_credentials() is identity

    assert identity.account_id == "123456789012"
    assert identity.region == "us-east-1"


def test_context_without_manager_has_no_clients():
    context = ExecutionContext(environment="staging", region="us-east-1")
    with pytest.raises(RuntimeError):
        context.client("ecs")


def test_create_builds_context_from_session():
    context = ExecutionContext.create("prod", region="ap-southeast-2")

    assert context.environment == "prod"
    assert context.region == "ap-southeast-2"
    assert context.client("ecs").meta.region_name == "ap-southeast-2"
