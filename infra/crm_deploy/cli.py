"""
crm-infra command line interface.

Wraps the cdk CLI for the Twenty CRM stacks:

    crm-infra preview                  # cdk diff
    crm-infra deploy                   # cdk deploy --all --require-approval never
    crm-infra destroy --force          # cdk destroy --all --force
    crm-infra synth                    # cdk synth --quiet
    crm-infra outputs                  # print the compute stack outputs
"""

from __future__ import annotations

import dataclasses
import json
import subprocess
from pathlib import Path
from typing import Annotated, Any

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from .logging import bind_contextvars, configure_logging
from .outputs import StackOutputsError, fetch_stack_outputs
from .runner import (
    CDK_INSTALL_HINT,
    CDK_NOT_FOUND_EXIT_CODE,
    CdkNotFoundError,
    CdkRunner,
    parse_context_pairs,
)

app = typer.Typer(
    name="crm-infra",
    help="Deploy and inspect the Twenty CRM AWS infrastructure",
    no_args_is_help=True,
)

console = Console()
err_console = Console(stderr=True)

StacksArgument = Annotated[
    list[str] | None,
    typer.Argument(help="Stack ids to target (default: all stacks)", show_default=False),
]


def _runner(ctx: typer.Context) -> CdkRunner:
    runner: CdkRunner = ctx.obj
    return runner


def _execute(runner: CdkRunner, command: list[str]) -> None:
    """Run a cdk command and exit with its status."""
    try:
        exit_code = runner.run(command)
    except CdkNotFoundError as e:
        err_console.print(f"[red]Error: {e}[/red]")
        err_console.print(CDK_INSTALL_HINT)
        raise typer.Exit(CDK_NOT_FOUND_EXIT_CODE) from e
    except subprocess.TimeoutExpired as e:
        err_console.print(f"[red]Error: cdk {command[1]} timed out after {e.timeout}s[/red]")
        raise typer.Exit(1) from e

    if exit_code != 0:
        err_console.print(f"[red]cdk {command[1]} failed with exit code {exit_code}[/red]")
        raise typer.Exit(exit_code)


@app.callback()
def main(
    ctx: typer.Context,
    app_dir: Annotated[
        Path,
        typer.Option(
            "--app-dir",
            help="Directory containing cdk.json",
            file_okay=False,
            dir_okay=True,
        ),
    ] = Path("infra"),
    profile: Annotated[
        str | None,
        typer.Option("--profile", help="AWS profile passed to cdk and boto3"),
    ] = None,
    context: Annotated[
        list[str] | None,
        typer.Option("--context", "-c", help="CDK context value as key=value (repeatable)"),
    ] = None,
    log_level: Annotated[
        str,
        typer.Option("--log-level", help="Minimum log level"),
    ] = "INFO",
    json_logs: Annotated[
        bool,
        typer.Option("--json-logs", help="Emit JSON logs (for CI)"),
    ] = False,
) -> None:
    """Shared options for every command."""
    configure_logging(json_format=json_logs, log_level=log_level)

    try:
        context_values = parse_context_pairs(context or [])
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--context") from e

    bind_contextvars(app_dir=str(app_dir), profile=profile)
    ctx.obj = CdkRunner(app_dir=app_dir, profile=profile, context=context_values)


@app.command()
def preview(ctx: typer.Context, stacks: StacksArgument = None) -> None:
    """Show what a deploy would change (cdk diff)."""
    runner = _runner(ctx)
    _execute(runner, runner.diff_command(stacks or []))


@app.command()
def deploy(
    ctx: typer.Context,
    stacks: StacksArgument = None,
    approve: Annotated[
        bool,
        typer.Option(
            "--approve/--no-approve",
            help="Skip cdk's interactive approval of security-sensitive changes",
        ),
    ] = True,
) -> None:
    """
    Deploy the stacks (cdk deploy --all).

    Example:
        crm-infra -c 'deployment={"alert_email": "ops@example.com"}' deploy
    """
    runner = _runner(ctx)
    console.print("\n[bold]Twenty CRM[/bold] - Deploying infrastructure\n")
    _execute(runner, runner.deploy_command(stacks or [], approve=approve))
    console.print("\n[green]✓ Deployment finished[/green]")
    console.print("Run [cyan]crm-infra outputs[/cyan] to see the application URL")


@app.command()
def destroy(
    ctx: typer.Context,
    stacks: StacksArgument = None,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Do not ask for confirmation"),
    ] = False,
) -> None:
    """
    Destroy the stacks (cdk destroy --all).

    The storage bucket is retained and the database keeps a final snapshot.
    """
    runner = _runner(ctx)
    _execute(runner, runner.destroy_command(stacks or [], force=force))


@app.command()
def synth(
    ctx: typer.Context,
    stacks: StacksArgument = None,
    timeout: Annotated[
        float,
        typer.Option("--timeout", help="Seconds before synthesis is aborted"),
    ] = 300,
) -> None:
    """Synthesize the CloudFormation templates (cdk synth --quiet)."""
    runner = dataclasses.replace(_runner(ctx), timeout=timeout)
    with console.status("Running cdk synth..."):
        _execute(runner, runner.synth_command(stacks or []))
    console.print("[green]✓ CDK synthesis successful[/green]")


def _deployment_context(runner: CdkRunner) -> dict[str, Any] | str | None:
    """
    The ``deployment`` context value cdk would pass to app.py.

    A ``-c deployment=...`` value replaces the one in cdk.json.
    """
    if "deployment" in runner.context:
        return runner.context["deployment"]

    cdk_json = runner.app_dir / "cdk.json"
    if not cdk_json.is_file():
        return None
    try:
        settings = json.loads(cdk_json.read_text())
    except ValueError as e:
        raise typer.BadParameter(f"{cdk_json}: {e}", param_hint="--app-dir") from e
    return settings.get("context", {}).get("deployment")


def _compute_stack_id(runner: CdkRunner) -> str:
    from stacks.composition import stack_ids
    from stacks.config import DEPLOYMENT_DEFAULTS, load_deployment_config

    try:
        config = load_deployment_config(_deployment_context(runner), DEPLOYMENT_DEFAULTS)
    except (ValueError, ValidationError) as e:
        raise typer.BadParameter(f"invalid deployment context: {e}", param_hint="--context") from e
    return stack_ids(config)["compute"]


@app.command()
def outputs(
    ctx: typer.Context,
    stack: Annotated[
        str | None,
        typer.Option("--stack", help="Stack name (default: the compute stack)"),
    ] = None,
    region: Annotated[
        str | None,
        typer.Option("--region", help="AWS region of the stack"),
    ] = None,
) -> None:
    """Print the CloudFormation outputs of a deployed stack."""
    runner = _runner(ctx)

    if stack is None:
        stack = _compute_stack_id(runner)

    try:
        values = fetch_stack_outputs(stack, profile=runner.profile, region=region)
    except StackOutputsError as e:
        err_console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from e

    table = Table(title=f"{stack} outputs")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for key, value in sorted(values.items()):
        table.add_row(key, f"[bold green]{value}[/bold green]" if key == "ApplicationURL" else value)

    console.print(table)
