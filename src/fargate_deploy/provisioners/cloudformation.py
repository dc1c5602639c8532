"""CloudFormation-backed provisioning client."""

import re
from pathlib import Path
from typing import Dict, List, Optional, Union

from botocore.exceptions import ClientError

from fargate_deploy.config.models import Configuration
from fargate_deploy.provisioners.base import (
    DefinitionReport,
    NoOpSignal,
    OperationHandle,
    OperationKind,
    Outcome,
    ProvisioningClient,
)
from fargate_deploy.utils.aws_client import ExecutionContext
from fargate_deploy.utils.errors import (
    CreateFailedError,
    DeleteFailedError,
    ErrorContext,
    OperationTimeoutError,
    UpdateFailedError,
    ValidationError,
    error_handler,
)
from fargate_deploy.utils.logging import get_logger
from fargate_deploy.utils.waiter import Waiter, WaitTimeoutError

logger = get_logger(__name__)

DEFAULT_TEMPLATES_DIR = "cloudformation"
CAPABILITIES = ["CAPABILITY_NAMED_IAM"]
NO_UPDATES_MESSAGE = "No updates are to be performed"
# States a stack only leaves by being deleted
STUCK_STATUSES = ("ROLLBACK_COMPLETE", "ROLLBACK_FAILED", "CREATE_FAILED", "DELETE_FAILED")
_STATE_REJECTION = re.compile(r"is in ([A-Z_]+) state and can not be updated")

SUCCESS_STATUS = {
    OperationKind.CREATE: "CREATE_COMPLETE",
    OperationKind.UPDATE: "UPDATE_COMPLETE",
    OperationKind.DELETE: "DELETE_COMPLETE",
}


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def _error_message(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Message", str(error))


def _is_missing_stack(error: ClientError) -> bool:
    return _error_code(error) == "ValidationError" and "does not exist" in _error_message(error)


class CloudFormationClient(ProvisioningClient):
    """Maps unit instances onto CloudFormation stacks.

    Definition refs are template file names under ``templates_dir``; only the
    parameters a template declares are sent with create/update calls.
    """

    def __init__(
        self,
        context: ExecutionContext,
        templates_dir: Union[str, Path] = DEFAULT_TEMPLATES_DIR,
        waiter: Optional[Waiter] = None,
        client=None
    ):
        """Initialize the client.

        Args:
            context: Execution context supplying the AWS session and region
            templates_dir: Directory containing the unit templates
            waiter: Poller used by ``await_completion``
            client: Pre-built boto3 CloudFormation client (defaults to the context's)
        """
        self.context = context
        self.templates_dir = Path(templates_dir)
        self.waiter = waiter or Waiter(interval=10.0, timeout=3600.0)
        self.cfn = client or context.client("cloudformation")
        self._reports: Dict[str, DefinitionReport] = {}

    def _template_path(self, definition_ref: str) -> Path:
        return self.templates_dir / definition_ref

    def _template_body(self, definition_ref: str) -> str:
        return self._template_path(definition_ref).read_text()

    def _describe(self, stack_name: str) -> Optional[dict]:
        try:
            response = self.cfn.describe_stacks(StackName=stack_name)
        except ClientError as e:
            if _is_missing_stack(e):
                return None
            raise error_handler.handle_exception(
                e, ErrorContext(full_name=stack_name, operation="describe", aws_service="cloudformation")
            ) from e
        stacks = response.get("Stacks", [])
        return stacks[0] if stacks else None

    def exists(self, full_name: str) -> bool:
        """True when the stack is live.

        A stack that is mid-operation, left behind by an interrupted run, is
        awaited first so the caller decides on its settled state.
        """
        status = self._settled_status(full_name)
        return status is not None and status != "DELETE_COMPLETE"

    def _settled_status(self, full_name: str) -> Optional[str]:
        stack = self._describe(full_name)
        if stack is None or not stack["StackStatus"].endswith("_IN_PROGRESS"):
            return stack["StackStatus"] if stack else None

        logger.info(f"{full_name} is {stack['StackStatus']}, waiting for it to settle")

        def check() -> Optional[str]:
            current = self._describe(full_name)
            if current is None:
                return "DELETE_COMPLETE"
            if current["StackStatus"].endswith("_IN_PROGRESS"):
                return None
            return current["StackStatus"]

        try:
            return self.waiter.wait_for(check, description=f"{full_name} to settle")
        except WaitTimeoutError as e:
            raise OperationTimeoutError(
                f"{full_name} is still {stack['StackStatus']}",
                reason=str(e),
                context=ErrorContext(full_name=full_name, operation="describe", aws_service="cloudformation"),
                suggestions=["Wait for the running stack operation to finish, then deploy again"]
            ) from e

    def has_definition(self, definition_ref: str) -> bool:
        return self._template_path(definition_ref).is_file()

    def validate_definition(self, definition_ref: str) -> DefinitionReport:
        try:
            body = self._template_body(definition_ref)
        except OSError as e:
            raise ValidationError(f"Template not readable: {self._template_path(definition_ref)}", cause=e)

        try:
            response = self.cfn.validate_template(TemplateBody=body)
        except ClientError as e:
            raise ValidationError(
                f"Template validation failed for {definition_ref}: {_error_message(e)}",
                cause=e
            ) from e

        report = DefinitionReport(
            definition_ref=definition_ref,
            parameters=[p["ParameterKey"] for p in response.get("Parameters", [])],
            capabilities=response.get("Capabilities", []),
            description=response.get("Description"),
        )
        self._reports[definition_ref] = report
        return report

    def _stack_parameters(self, definition_ref: str, config: Configuration) -> List[dict]:
        report = self._reports.get(definition_ref) or self.validate_definition(definition_ref)
        available = config.parameters()
        unresolved = [key for key in report.parameters if key not in available]
        if unresolved:
            logger.debug(
                f"{definition_ref}: no value for {', '.join(unresolved)}, template defaults apply"
            )
        return [
            {"ParameterKey": key, "ParameterValue": available[key]}
            for key in report.parameters
            if key in available
        ]

    def _stack_tags(self, config: Configuration) -> List[dict]:
        return [
            {"Key": "Environment", "Value": config.environment.value},
            {"Key": "Project", "Value": config.project_name},
            {"Key": "ManagedBy", "Value": "CloudFormation"},
        ]

    def _stack_request(self, full_name: str, definition_ref: str, config: Configuration) -> dict:
        return {
            "StackName": full_name,
            "TemplateBody": self._template_body(definition_ref),
            "Parameters": self._stack_parameters(definition_ref, config),
            "Capabilities": CAPABILITIES,
            "Tags": self._stack_tags(config),
        }

    def create(self, full_name: str, definition_ref: str, config: Configuration) -> OperationHandle:
        try:
            response = self.cfn.create_stack(**self._stack_request(full_name, definition_ref, config))
        except ClientError as e:
            reason = _error_message(e)
            raise CreateFailedError(
                f"Failed to create stack {full_name}: {reason}",
                reason=reason,
                context=ErrorContext(full_name=full_name, operation="create", aws_service="cloudformation"),
                cause=e
            ) from e
        logger.debug(f"create_stack accepted for {full_name}")
        return OperationHandle(full_name, OperationKind.CREATE, response.get("StackId"))

    def update(
        self,
        full_name: str,
        definition_ref: str,
        config: Configuration
    ) -> Union[OperationHandle, NoOpSignal]:
        try:
            response = self.cfn.update_stack(**self._stack_request(full_name, definition_ref, config))
        except ClientError as e:
            reason = _error_message(e)
            if _error_code(e) == "ValidationError" and NO_UPDATES_MESSAGE in reason:
                return NoOpSignal(full_name, reason)
            raise UpdateFailedError(
                f"Failed to update stack {full_name}: {reason}",
                reason=reason,
                context=ErrorContext(full_name=full_name, operation="update", aws_service="cloudformation"),
                cause=e,
                suggestions=self._update_suggestions(full_name, reason, config)
            ) from e
        logger.debug(f"update_stack accepted for {full_name}")
        return OperationHandle(full_name, OperationKind.UPDATE, response.get("StackId"))

    def _update_suggestions(self, full_name: str, reason: str, config: Configuration) -> List[str]:
        match = _STATE_REJECTION.search(reason)
        if not match or match.group(1) not in STUCK_STATUSES:
            return []
        prefix = config.full_name("")
        unit_id = full_name[len(prefix):] if full_name.startswith(prefix) else full_name
        return [
            f"{full_name} is in {match.group(1)} and can only be deleted",
            f"Run: fargate-deploy rollback {config.environment.value} --delete {unit_id}, then deploy again",
        ]

    def delete(self, full_name: str) -> OperationHandle:
        stack = self._describe(full_name)
        # Track by stack id so the DELETE_COMPLETE/DELETE_FAILED status stays visible
        stack_id = stack.get("StackId") if stack else None
        try:
            self.cfn.delete_stack(StackName=full_name)
        except ClientError as e:
            reason = _error_message(e)
            raise DeleteFailedError(
                f"Failed to delete stack {full_name}: {reason}",
                reason=reason,
                context=ErrorContext(full_name=full_name, operation="delete", aws_service="cloudformation"),
                cause=e
            ) from e
        return OperationHandle(full_name, OperationKind.DELETE, stack_id)

    def await_completion(self, handle: OperationHandle) -> Outcome:
        target = handle.operation_id or handle.full_name

        def check() -> Optional[str]:
            stack = self._describe(target)
            if stack is None:
                return "DELETE_COMPLETE" if handle.kind == OperationKind.DELETE else "MISSING"
            status = stack["StackStatus"]
            if status.endswith("_IN_PROGRESS"):
                return None
            return status

        try:
            status = self.waiter.wait_for(
                check,
                description=f"{handle.kind.value} of {handle.full_name}",
                on_poll=lambda attempt: logger.debug(f"{handle.full_name} still in progress ({attempt})"),
            )
        except WaitTimeoutError as e:
            return Outcome.timeout(str(e))

        if status == SUCCESS_STATUS[handle.kind]:
            return Outcome.success()

        if status == "MISSING":
            return Outcome.failure(f"Stack {handle.full_name} disappeared during {handle.kind.value}")

        return Outcome.failure(self._failure_reason(target, status))

    def _failure_reason(self, stack_name: str, status: str) -> str:
        """Oldest failed resource event of the latest page, else the stack status."""
        try:
            events = self.cfn.describe_stack_events(StackName=stack_name).get("StackEvents", [])
        except ClientError as e:
            logger.debug(f"Could not read stack events for {stack_name}: {e}")
            events = []

        root_cause = None
        for event in events:
            reason = event.get("ResourceStatusReason")
            if event.get("ResourceStatus", "").endswith("_FAILED") and reason:
                if "cancelled" in reason.lower():
                    continue
                root_cause = f"{event.get('LogicalResourceId')}: {reason}"

        if root_cause:
            return f"{status} - {root_cause}"
        return f"Stack ended in {status}"

    def outputs(self, full_name: str) -> Dict[str, str]:
        stack = self._describe(full_name)
        if stack is None:
            return {}
        return {
            output["OutputKey"]: output["OutputValue"]
            for output in stack.get("Outputs", [])
        }
