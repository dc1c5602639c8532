"""Tests for translating AWS and network failures into deployment errors."""

import pytest
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    EndpointConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)

from fargate_deploy.utils.errors import (
    CreateFailedError,
    ErrorCategory,
    ErrorContext,
    ErrorHandler,
    ErrorSeverity,
    MissingRequiredKeyError,
)


def client_error(code, message, request_id="req-1"):
    return ClientError(
        {"Error": {"Code": code, "Message": message}, "ResponseMetadata": {"RequestId": request_id}},
        "CreateStack"
    )


@pytest.fixture
def handler():
    return ErrorHandler()


@pytest.mark.parametrize("code,category", [
    ("ExpiredToken", ErrorCategory.CREDENTIAL),
    ("AccessDenied", ErrorCategory.PERMISSION),
    ("InsufficientCapabilitiesException", ErrorCategory.PERMISSION),
    ("ThrottlingException", ErrorCategory.NETWORK),
    ("ClusterNotFoundException", ErrorCategory.PROVISIONING),
])
def test_known_codes_are_categorized(handler, code, category):
    error = handler.handle_exception(client_error(code, "details"), ErrorContext(full_name="myapp-staging-alb"))

    assert error.category == category
    assert error.message.endswith(": details")
    assert error.suggestions
    assert error.context.full_name == "myapp-staging-alb"
    assert error.context.request_id == "req-1"


def test_unknown_code_keeps_request_id(handler):
    error = handler.handle_exception(client_error("TooManyBuckets", "nope"))

    assert error.category == ErrorCategory.AWS
    assert error.message == "AWS error (TooManyBuckets): nope"
    assert error.suggestions == ["AWS request ID: req-1"]


def test_missing_credentials_are_critical(handler):
    error = handler.handle_exception(NoCredentialsError())

    assert error.category == ErrorCategory.CREDENTIAL
    assert error.severity == ErrorSeverity.CRITICAL


@pytest.mark.parametrize("error_type", [EndpointConnectionError, ReadTimeoutError, ConnectionClosedError])
def test_network_errors(handler, error_type):
    error = handler.handle_exception(error_type(endpoint_url="https://cloudformation.example"))
    assert error.category == ErrorCategory.NETWORK


def test_deployment_errors_pass_through(handler):
    original = CreateFailedError("Failed to create stack", reason="denied")
    assert handler.handle_exception(original) is original


def test_user_message_and_dict():
    error = MissingRequiredKeyError(["ProjectName"], path="cloudformation/parameters/staging.json")

    message = error.to_user_message()
    details = error.to_dict()

    assert message.startswith("CRITICAL: Missing required configuration key(s)")
    assert "Add a non-empty value for 'ProjectName'" in message
    assert details["type"] == "MissingRequiredKeyError"
    assert details["category"] == "configuration"
    assert details["context"] == {}
