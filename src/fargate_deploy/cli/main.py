"""Main CLI entry point."""

import sys
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Optional

import click
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TaskProgressColumn
from rich.table import Table
from rich.panel import Panel

from fargate_deploy.config import DEFAULT_PARAMS_DIR, Configuration, ConfigResolver, Environment
from fargate_deploy.orchestrator import (
    BUILD_PROJECT_SUFFIX,
    BuildStatus,
    BuildTrigger,
    DeploymentOrchestrator,
    DeploymentResult,
    RollbackController,
    TeardownResult,
    TeardownStatus,
    UnitRegistry,
    UnitStatus,
)
from fargate_deploy.provisioners import (
    DEFAULT_TEMPLATES_DIR,
    BuildBackend,
    CloudFormationClient,
    CodeBuildClient,
    ECSServiceClient,
    ProvisioningClient,
    ServiceRevisionBackend,
)
from fargate_deploy.utils.aws_client import ExecutionContext
from fargate_deploy.utils.errors import (
    BuildFailedError,
    ConfigError,
    DeploymentError,
    ErrorContext,
    UserAbort,
    error_handler,
)
from fargate_deploy.utils.logging import setup_logging, get_logger

console = Console()
logger = get_logger(__name__)

DELETE_CONFIRMATION_TOKEN = "DELETE"
LOAD_BALANCER_OUTPUT = ("alb", "LoadBalancerURL")

ENVIRONMENT = click.Choice(Environment.names())


@dataclass
class Backends:
    """Backend clients for one invocation."""
    provisioning: ProvisioningClient
    builds: BuildBackend
    revisions: ServiceRevisionBackend


@click.group()
@click.option('--profile', help='AWS profile to use')
@click.option('--region', help='AWS region (defaults to the profile region, then us-east-1)')
@click.option('--log-level', default='info', type=click.Choice(['debug', 'info', 'warning', 'error']))
@click.option('--params-dir', default=DEFAULT_PARAMS_DIR, show_default=True,
              help='Directory holding <environment>.json parameter files')
@click.option('--templates-dir', default=DEFAULT_TEMPLATES_DIR, show_default=True,
              help='Directory holding the unit templates')
@click.version_option(package_name='fargate-deploy')
@click.pass_context
def cli(ctx, profile, region, log_level, params_dir, templates_dir):
    """Fargate stack deployment tool."""
    ctx.ensure_object(dict)
    ctx.obj['profile'] = profile
    ctx.obj['region'] = region
    ctx.obj['log_level'] = log_level
    ctx.obj['params_dir'] = params_dir
    ctx.obj['templates_dir'] = templates_dir

    # Setup logging
    setup_logging(log_level)


def load_config(ctx, environment: str) -> Configuration:
    """Resolve and validate the parameter file for an environment."""
    try:
        return ConfigResolver(ctx.obj['params_dir']).resolve(environment)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red]\n{e.to_user_message()}")
        sys.exit(1)


def create_backends(ctx, environment: str) -> Backends:
    """Create AWS-backed clients sharing one execution context."""
    try:
        context = ExecutionContext.create(
            environment,
            profile=ctx.obj.get('profile'),
            region=ctx.obj.get('region')
        )
        identity = context.clients.validate_credentials()
    except Exception as e:
        error = error_handler.handle_exception(e, ErrorContext(operation="validate_credentials"))
        console.print(f"[red]Error creating AWS session:[/red]\n{error.to_user_message()}")
        sys.exit(1)

    console.print(f"[dim]Account: {identity.account_id}  Region: {context.region}[/dim]")
    return Backends(
        provisioning=CloudFormationClient(context, templates_dir=ctx.obj['templates_dir']),
        builds=CodeBuildClient(context),
        revisions=ECSServiceClient(context)
    )


@contextmanager
def command_errors(action: str):
    """Map errors raised by a command onto console output and exit codes."""
    try:
        yield
    except UserAbort as e:
        console.print(f"[yellow]{e.message}[/yellow]")
    except DeploymentError as e:
        console.print(f"[red]{action} error:[/red]\n{e.to_user_message()}")
        sys.exit(1)
    except click.exceptions.Abort:
        console.print("[yellow]Operation cancelled by user[/yellow]")
    except Exception as e:
        logger.exception(f"Unexpected error during {action.lower()}")
        console.print(f"[red]Unexpected error:[/red] {e}")
        sys.exit(1)


class RichProgressCallback:
    """Progress callback that displays unit status changes using Rich."""

    FINISHED = (UnitStatus.DONE, UnitStatus.FAILED, UnitStatus.SKIPPED)

    def __init__(self, progress: Progress, task_id):
        self.progress = progress
        self.task_id = task_id
        self.completed = 0

    def __call__(self, unit_id: str, status: UnitStatus, message: Optional[str]):
        if status in self.FINISHED:
            self.completed += 1
            marker = {
                UnitStatus.DONE: "[green]✓[/green]",
                UnitStatus.FAILED: "[red]✗[/red]",
                UnitStatus.SKIPPED: "[yellow]-[/yellow]",
            }[status]
            self.progress.update(self.task_id, completed=self.completed, description=f"{marker} {unit_id}")
        else:
            self.progress.update(
                self.task_id,
                description=f"[cyan]{status.value.capitalize()}:[/cyan] {unit_id}"
            )


def _progress() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console
    )


def _print_result_table(result: DeploymentResult) -> None:
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Unit", style="cyan")
    table.add_column("Stack")
    table.add_column("Operation", style="magenta")
    table.add_column("Status", style="yellow")
    table.add_column("Duration", justify="right")

    status_style = {UnitStatus.DONE: "green", UnitStatus.FAILED: "red", UnitStatus.SKIPPED: "yellow"}
    for state in result.units:
        style = status_style.get(state.status, "white")
        table.add_row(
            state.unit_id,
            state.full_name,
            state.operation.value if state.operation else "-",
            f"[{style}]{state.status.value}[/{style}]",
            f"{state.duration:.1f}s"
        )
    console.print(table)


def _print_outputs(title: str, outputs: Dict[str, str]) -> None:
    if not outputs:
        console.print("[dim]No outputs[/dim]")
        return
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Output", style="cyan")
    table.add_column("Value", style="green")
    for name, value in sorted(outputs.items()):
        table.add_row(name, value)
    console.print(table)


def _load_balancer_url(result: DeploymentResult) -> str:
    if result.config is None:
        return "Unable to retrieve"
    try:
        return result.config.output(*LOAD_BALANCER_OUTPUT)
    except KeyError:
        return "Unable to retrieve"


@cli.command()
@click.argument('environment', type=ENVIRONMENT)
@click.option('--dry-run', '--validate', 'dry_run', is_flag=True,
              help='Validate templates only, change nothing')
@click.pass_context
def deploy(ctx, environment, dry_run):
    """Deploy every unit in dependency order."""
    with command_errors("Deployment"):
        config = load_config(ctx, environment)
        registry = UnitRegistry()

        console.print(Panel.fit(
            f"[bold]Deploying to {environment}[/bold]\n"
            f"Project: {config.project_name}\n"
            f"Stack prefix: {config.stack_prefix}\n"
            f"Units: {len(registry)}\n"
            f"Mode: {'dry run' if dry_run else 'deploy'}",
            title="Deployment Configuration",
            border_style="cyan"
        ))
        if dry_run:
            console.print("[yellow]Running in DRY-RUN mode - no resources will be deployed[/yellow]")

        backends = create_backends(ctx, environment)

        with _progress() as progress:
            task_id = progress.add_task("[cyan]Starting deployment...", total=len(registry))
            orchestrator = DeploymentOrchestrator(
                client=backends.provisioning,
                registry=registry,
                build_trigger=None if dry_run else BuildTrigger(backends.builds),
                progress_callback=RichProgressCallback(progress, task_id)
            )
            result = orchestrator.deploy(registry.ordered_units(), config, dry_run=dry_run)

        console.print()
        _print_result_table(result)

        if result.is_failed():
            failed = result.failed_unit()
            console.print(Panel.fit(
                f"[red]✗ Deployment failed[/red]\n\n"
                f"Failed unit: {failed.unit_id if failed else 'unknown'}\n"
                f"Duration: {result.duration:.2f}s",
                title="Deployment Failed",
                border_style="red"
            ))
            if result.error:
                console.print(result.error.to_user_message())
            console.print("\n[dim]Completed units stay deployed; use 'rollback' to remove them[/dim]")
            sys.exit(1)

        if dry_run:
            console.print(Panel.fit(
                "[green]✓ All templates validated successfully[/green]\n\n"
                "Run without --dry-run to deploy",
                title="Dry-Run Complete",
                border_style="green"
            ))
            return

        if result.build:
            console.print(f"[green]Build started:[/green] {result.build.build_id}")
            if result.build.logs_url:
                console.print(f"  Logs: {result.build.logs_url}")
        elif result.build_error:
            console.print(f"[yellow]Could not trigger initial build:[/yellow] {result.build_error.message}")
            console.print(f"Trigger manually: [cyan]fargate-deploy build {environment}[/cyan]")

        console.print(Panel.fit(
            f"[green]✓ All stacks deployed successfully[/green]\n\n"
            f"Application URL: {_load_balancer_url(result)}\n"
            f"Duration: {result.duration:.2f}s",
            title="Deployment Complete",
            border_style="green"
        ))


@cli.command('deploy-single')
@click.argument('environment', type=ENVIRONMENT)
@click.argument('unit_id')
@click.pass_context
def deploy_single(ctx, environment, unit_id):
    """Deploy one unit against its already-deployed dependencies."""
    with command_errors("Deployment"):
        config = load_config(ctx, environment)
        registry = UnitRegistry()
        unit = registry.unit_by_id(unit_id)

        console.print(Panel.fit(
            f"[bold]Deploy single stack[/bold]\n"
            f"Environment: {environment}\n"
            f"Unit: {unit.id} ({unit.description})\n"
            f"Stack name: {config.full_name(unit.id)}\n"
            f"Template: {unit.definition_ref}",
            title="Deploy Single",
            border_style="cyan"
        ))

        backends = create_backends(ctx, environment)
        orchestrator = DeploymentOrchestrator(client=backends.provisioning, registry=registry)

        with console.status(f"Deploying {unit.id}..."):
            result = orchestrator.deploy_single(unit.id, config)

        _print_result_table(result)
        state = result.get_state(unit.id)

        if result.is_failed():
            console.print(result.error.to_user_message() if result.error else "[red]Deployment failed[/red]")
            sys.exit(1)

        if state.status == UnitStatus.SKIPPED:
            console.print(f"[yellow]Template {unit.definition_ref} not found, nothing deployed[/yellow]")
            return

        console.print("[green]✓ Stack deployed successfully[/green]")
        _print_outputs(f"Outputs: {state.full_name}", state.outputs)


@cli.command()
@click.argument('environment', type=ENVIRONMENT)
@click.option('--service', 'service', is_flag=True, help='Roll the ECS service back to an earlier task revision')
@click.option('--delete-all', 'delete_all', is_flag=True, help='Delete every stack in reverse order')
@click.option('--delete', 'delete_unit', metavar='UNIT_ID', help='Delete a single stack')
@click.option('--wait/--no-wait', default=False, help='Wait for the service to stabilize after --service')
@click.pass_context
def rollback(ctx, environment, service, delete_all, delete_unit, wait):
    """Roll back the service or tear down stacks."""
    chosen = [flag for flag, on in (('--service', service), ('--delete-all', delete_all),
                                    ('--delete', delete_unit)) if on]
    if len(chosen) != 1:
        raise click.UsageError("Choose exactly one of --service, --delete-all or --delete UNIT_ID")

    with command_errors("Rollback"):
        config = load_config(ctx, environment)
        registry = UnitRegistry()

        if service:
            _rollback_service(ctx, environment, config, registry, wait)
            return

        if delete_all:
            console.print(Panel.fit(
                f"[bold red]⚠ WARNING: This will delete ALL infrastructure for {environment}[/bold red]\n\n"
                f"Stack prefix: {config.stack_prefix}\n"
                f"Stacks: {', '.join(config.full_name(u.id) for u in registry.reverse_order())}",
                title="Delete All Stacks",
                border_style="red"
            ))
            reply = click.prompt(
                f"Type '{DELETE_CONFIRMATION_TOKEN}' to confirm",
                default="",
                show_default=False
            )
            if reply.strip() != DELETE_CONFIRMATION_TOKEN:
                console.print("[yellow]Deletion cancelled[/yellow]")
                return
            unit_ids = None
        else:
            unit_ids = [registry.unit_by_id(delete_unit).id]

        backends = create_backends(ctx, environment)
        controller = RollbackController(
            client=backends.provisioning,
            config=config,
            registry=registry,
            progress_callback=_teardown_progress
        )
        result = controller.teardown(unit_ids)
        _print_teardown(result)
        if not result.is_success():
            console.print("\n[red]Some stacks may need manual cleanup[/red]")
            sys.exit(1)


def _teardown_progress(unit_id: str, status: TeardownStatus, message: Optional[str]) -> None:
    if status == TeardownStatus.DELETING:
        console.print(f"[yellow]Deleting stack:[/yellow] {unit_id}")


def _print_teardown(result: TeardownResult) -> None:
    table = Table(title="Teardown", show_header=True, header_style="bold cyan")
    table.add_column("Unit", style="cyan")
    table.add_column("Stack")
    table.add_column("Result")
    table.add_column("Detail")

    style = {
        TeardownStatus.DELETED: "green",
        TeardownStatus.ABSENT: "dim",
        TeardownStatus.FAILED: "red",
        TeardownStatus.BLOCKED: "yellow",
    }
    for record in result.units:
        color = style.get(record.status, "white")
        detail = record.error.message if record.error else ""
        table.add_row(record.unit_id, record.full_name, f"[{color}]{record.status.value}[/{color}]", detail)
    console.print(table)


def _rollback_service(ctx, environment: str, config: Configuration, registry: UnitRegistry, wait: bool) -> None:
    backends = create_backends(ctx, environment)
    controller = RollbackController(
        client=backends.provisioning,
        config=config,
        registry=registry,
        revisions=backends.revisions
    )

    console.print(Panel.fit(
        f"Service: {controller.service_name}\n"
        f"Cluster: {controller.cluster_name}",
        title="Rollback ECS Service",
        border_style="cyan"
    ))

    def select_revision(current: str, candidates):
        console.print(f"Current task definition: [cyan]{current}[/cyan]")
        table = Table(title="Recent task definitions", show_header=False)
        table.add_column("Task definition")
        for arn in candidates:
            table.add_row(arn)
        console.print(table)
        return click.prompt("Enter the task definition revision to rollback to (e.g., 3)")

    def confirm(target: str) -> bool:
        console.print(f"[yellow]Rolling back service to:[/yellow] {target}")
        return click.confirm("Are you sure?", default=False)

    result = controller.rollback_service(select_revision, confirm, wait=wait)

    console.print(f"[green]✓ Service rollback initiated:[/green] {result.new_revision}")
    if result.stable is True:
        console.print("[green]Service is stable[/green]")
    elif result.stable is False:
        console.print("[yellow]Service has not stabilized yet, check the ECS console[/yellow]")
    else:
        console.print("Monitor the deployment in the ECS console")


@cli.command()
@click.argument('environment', type=ENVIRONMENT)
@click.option('--wait/--no-wait', default=None, help='Wait for the build to finish (prompts if omitted)')
@click.pass_context
def build(ctx, environment, wait):
    """Start the image build for an environment."""
    with command_errors("Build"):
        config = load_config(ctx, environment)
        project_id = config.full_name(BUILD_PROJECT_SUFFIX)

        console.print(Panel.fit(
            f"Environment: {environment}\n"
            f"Build project: {project_id}",
            title="Trigger CodeBuild",
            border_style="cyan"
        ))

        backends = create_backends(ctx, environment)
        trigger = BuildTrigger(backends.builds)
        handle = trigger.start(project_id)

        console.print(f"[green]✓ Build started:[/green] {handle.build_id}")
        console.print(
            f"View in AWS Console: https://console.aws.amazon.com/codesuite/codebuild/projects/{project_id}/history"
        )

        if wait is None:
            wait = click.confirm("Wait for build to complete?", default=False)
        if not wait:
            return

        with console.status("Waiting for build to complete..."):
            status = trigger.poll(handle)

        logs_url = trigger.describe(handle).logs_url
        if status == BuildStatus.SUCCEEDED:
            console.print("[green]✓ Build completed successfully[/green]")
            if logs_url:
                console.print(f"Build logs: {logs_url}")
            return

        raise BuildFailedError(
            f"Build {handle.build_id} finished with status: {status.value}",
            context=ErrorContext(operation="build"),
            suggestions=[f"Check build logs: {logs_url}"] if logs_url else []
        )


@cli.command()
def units():
    """Show the deployment order of the stack's units."""
    registry = UnitRegistry()
    table = Table(title="Infrastructure units", show_header=True, header_style="bold cyan")
    table.add_column("#", justify="right")
    table.add_column("Unit", style="cyan")
    table.add_column("Template")
    table.add_column("Depends on", style="magenta")
    table.add_column("Description")

    for position, unit in enumerate(registry.ordered_units(), 1):
        table.add_row(
            str(position),
            unit.id,
            unit.definition_ref,
            ", ".join(unit.depends_on) or "-",
            unit.description
        )
    console.print(table)


if __name__ == '__main__':
    cli()
