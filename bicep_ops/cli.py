"""
CLI entry point for bicep-ops.
"""

import logging
from functools import wraps
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from bicep_ops.exceptions import BicepOpsError, format_error_for_cli
from bicep_ops.models.environment import Environment
from bicep_ops.scan import ScanOutput
from bicep_ops.util.logging import configure_logging
from bicep_ops.util.progress import operation_status
from bicep_ops.workspace import Workspace

app = typer.Typer(
    name="bicep-ops",
    help="Naming, parameter files, template checks and az deployments for Bicep infrastructure",
    add_completion=False,
)
console = Console()
logger = logging.getLogger(__name__)

params_app = typer.Typer(help="Parameter file commands (generate, validate)")
app.add_typer(params_app, name="params")


def handle_errors(func):
    """Decorator to handle exceptions in CLI commands with nice formatting."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except typer.Exit:
            raise
        except BicepOpsError as e:
            console.print(format_error_for_cli(e))
            raise typer.Exit(1)
        except Exception as e:
            logger.exception("Unexpected error")
            console.print(f"[red]Unexpected error:[/red] {str(e)}")
            raise typer.Exit(1)

    return wrapper


def current_workspace() -> Workspace:
    return Workspace(Path.cwd()).require()


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging")):
    """Tooling for a Bicep infrastructure repository."""
    configure_logging(verbose)


@app.command()
@handle_errors
def init(
    workspace_dir: str = typer.Argument(..., help="Workspace directory to initialize"),
    with_templates: bool = typer.Option(
        False, "--with-templates", help="Scaffold infra/main.bicep from the default plan"
    ),
):
    """Initialize a new bicep-ops workspace."""
    from bicep_ops.scaffold import (
        render_main_template,
        write_checkov_config,
        write_parameter_files,
        write_rules_file,
    )
    from bicep_ops.util.files import write_text

    console.print(f"[bold blue]Initializing workspace:[/bold blue] {workspace_dir}")

    workspace = Workspace(Path(workspace_dir))
    workspace.initialize()
    console.print(f"[green]✓ Created directory structure in {workspace_dir}[/green]")
    console.print("[green]✓ Wrote configuration to bicep-ops.yaml[/green]")

    written = write_parameter_files(workspace)
    for path in written:
        console.print(f"[green]✓ Wrote {path.relative_to(workspace.root)}[/green]")

    write_checkov_config(workspace.root / workspace.scan_settings()["config_file"])
    write_rules_file(workspace.rules_file)
    console.print("[green]✓ Wrote .checkov.yaml and checks.yaml[/green]")

    if with_templates:
        profile = workspace.profile(workspace.environments()[0])
        write_text(workspace.main_template, render_main_template(workspace.plan(), profile))
        console.print(
            f"[green]✓ Scaffolded {workspace.main_template.relative_to(workspace.root)}[/green]"
        )

    console.print("\n[dim]Next steps:[/dim]")
    console.print(f"  cd {workspace_dir}")
    console.print("  bicep-ops test")
    console.print("  bicep-ops deploy --env dev --what-if")


@app.command()
@handle_errors
def names(env: Environment = typer.Option(..., "--env", "-e", help="Environment")):
    """Show resource names for an environment."""
    workspace = current_workspace()
    naming = workspace.naming(env.value)

    table = Table(title=f"Resource names ({env.value})")
    table.add_column("Resource type", style="cyan")
    table.add_column("Name")
    for resource_type, name in naming.all_names().items():
        table.add_row(resource_type, name)
    console.print(table)


@app.command()
@handle_errors
def plan(env: Environment = typer.Option(..., "--env", "-e", help="Environment")):
    """Show the module composition deployed for an environment."""
    from bicep_ops.bicep import check_plan_against_template, parse_template

    workspace = current_workspace()
    profile = workspace.profile(env.value)
    deployment_plan = workspace.plan()
    modules = deployment_plan.resolve(profile.features)
    deployed = {m.name for m in modules}

    table = Table(title=f"Deployment plan ({env.value})")
    table.add_column("#", justify="right")
    table.add_column("Stage", style="cyan")
    table.add_column("Module")
    table.add_column("Depends on")
    table.add_column("Condition", style="dim")

    index = 0
    for stage, stage_modules in deployment_plan.by_stage().items():
        for module in stage_modules:
            if module.name in deployed:
                index += 1
                resolved = next(m for m in modules if m.name == module.name)
                table.add_row(
                    str(index),
                    stage.value,
                    module.name,
                    ", ".join(resolved.depends_on) or "-",
                    module.condition or "",
                )
            else:
                table.add_row("", stage.value, f"[dim strike]{module.name}[/dim strike]", "", module.condition or "")
    console.print(table)
    console.print(f"[green]✓ {len(modules)} of {len(deployment_plan.modules)} modules deployed[/green]")

    if workspace.main_template.is_file():
        findings = check_plan_against_template(deployment_plan, parse_template(workspace.main_template))
        for finding in findings:
            color = "red" if finding.is_error else "yellow"
            console.print(f"[{color}]{finding}[/{color}]")
        if any(f.is_error for f in findings):
            raise typer.Exit(1)
        if not findings:
            console.print("[green]✓ Template matches the plan[/green]")
    else:
        console.print(f"[yellow]⚠ {workspace.main_template} not found; template not compared[/yellow]")


@params_app.command("generate")
@handle_errors
def params_generate(
    env: Environment | None = typer.Option(None, "--env", "-e", help="Environment (default: all)"),
):
    """Write parameter files from the environment profiles."""
    from bicep_ops.scaffold import write_parameter_files

    workspace = current_workspace()
    environments = [env.value] if env else None
    for path in write_parameter_files(workspace, environments):
        console.print(f"[green]✓ Wrote {path.relative_to(workspace.root)}[/green]")


@params_app.command("validate")
@handle_errors
def params_validate(
    env: Environment | None = typer.Option(None, "--env", "-e", help="Environment (default: all)"),
):
    """Validate parameter files against the schema and the orchestration template."""
    from bicep_ops.bicep import parse_template
    from bicep_ops.parameters import (
        check_against_template,
        load_parameter_file,
        validate_parameter_file,
    )

    workspace = current_workspace()
    template = parse_template(workspace.main_template) if workspace.main_template.is_file() else None
    if template is None:
        console.print("[yellow]⚠ main template not found; checking schema only[/yellow]")

    failed = False
    for environment in [env.value] if env else workspace.environments():
        path = workspace.parameter_file(environment)
        valid, errors = validate_parameter_file(path, environment)

        findings = []
        if valid and template:
            document = load_parameter_file(path, environment)
            findings = check_against_template(document, template, path.name)
        errors.extend(str(f) for f in findings if f.is_error)

        for finding in findings:
            if not finding.is_error:
                console.print(f"[yellow]⚠ {finding}[/yellow]")

        if errors:
            failed = True
            console.print(f"[red]✗ {path.name}[/red]")
            for error in errors:
                console.print(f"  {error}", markup=False)
        else:
            console.print(f"[green]✓ {path.name}[/green]")

    if failed:
        raise typer.Exit(1)


@app.command()
@handle_errors
def test(
    rules: Path | None = typer.Option(None, "--rules", help="Rule file (default: paths.rules)"),
    report: bool = typer.Option(False, "--report", help="Write reports/template-checks.md"),
):
    """Run regex assertions against templates and parameter files."""
    from bicep_ops.checks import load_rules, run_checks
    from bicep_ops.report import write_check_report

    workspace = current_workspace()
    loaded = load_rules(rules or workspace.rules_file)
    check_report = run_checks(workspace.templates_dir, loaded)

    table = Table(title="Template checks")
    table.add_column("Rule", style="cyan")
    table.add_column("File")
    table.add_column("Status")
    styles = {"passed": "green", "failed": "red", "warning": "yellow", "skipped": "dim"}
    for result in check_report.results:
        status = result.status
        if status == "failed" and result.rule.severity == "warning":
            status = "warning"
        table.add_row(result.rule.id, result.file or "-", f"[{styles[status]}]{status}[/{styles[status]}]")
    console.print(table)

    summary = check_report.summary()
    console.print(
        f"{summary['passed']} passed, {summary['failed']} failed, {summary['skipped']} skipped"
    )
    for failure in check_report.failures:
        console.print(f"{failure.rule.id} {failure.file}: {failure.detail}", markup=False)

    if report:
        path = write_check_report(check_report, workspace.reports_dir / "template-checks.md")
        console.print(f"[green]✓ Report written to {path.relative_to(workspace.root)}[/green]")

    if not check_report.success:
        raise typer.Exit(1)


@app.command()
@handle_errors
def scan(
    output: ScanOutput = typer.Option(ScanOutput.JSON, "--output", "-o", help="Checkov output format"),
    soft_fail: bool = typer.Option(False, "--soft-fail", help="Do not fail on failed checks"),
):
    """Run the Checkov security scan over the templates directory."""
    from bicep_ops.report import write_scan_report
    from bicep_ops.scan import run_checkov

    workspace = current_workspace()
    settings = workspace.scan_settings()
    soft_fail = soft_fail or settings["soft_fail"]
    config_file = workspace.root / settings["config_file"] if settings.get("config_file") else None

    with operation_status(f"Scanning {workspace.templates_dir.name}", console):
        result = run_checkov(
            workspace.templates_dir,
            config_file=config_file,
            output=output.value,
            frameworks=settings["frameworks"],
            soft_fail=soft_fail,
            skip_checks=settings["skip_checks"],
        )

    extension = output.report_extension
    path = write_scan_report(
        result,
        workspace.templates_dir,
        workspace.reports_dir / f"security-scan.{extension}",
        soft_fail=soft_fail,
    )

    if output is ScanOutput.JSON:
        console.print(
            f"{result.passed} passed, {result.failed} failed, {result.skipped} skipped "
            f"({result.resource_count} resources)"
        )
        for finding in result.findings:
            console.print(f"  [red]{finding.check_id}[/red] {finding.file_path}: {finding.check_name}")
    console.print(f"[green]✓ Report written to {path.relative_to(workspace.root)}[/green]")

    if not result.gate(soft_fail):
        raise typer.Exit(1)


def _run_pipeline(action, options):
    from bicep_ops.deploy import DeploymentPipeline

    pipeline = DeploymentPipeline(current_workspace(), console=console)
    result = pipeline.run(action, options)
    raise typer.Exit(result.exit_code)


@app.command()
@handle_errors
def validate(
    env: Environment = typer.Option(..., "--env", "-e", help="Environment"),
    resource_group: str | None = typer.Option(None, "--resource-group", "-g", help="Resource group"),
    location: str | None = typer.Option(None, "--location", "-l", help="Region"),
    skip_security_scan: bool = typer.Option(False, "--skip-security-scan", help="Skip Checkov"),
):
    """Check parameters, scan, build and validate the deployment without applying it."""
    from bicep_ops.deploy import Action, DeploymentOptions

    _run_pipeline(
        Action.VALIDATE,
        DeploymentOptions(
            environment=env.value,
            resource_group=resource_group,
            location=location,
            skip_security_scan=skip_security_scan,
        ),
    )


@app.command(name="what-if")
@handle_errors
def what_if(
    env: Environment = typer.Option(..., "--env", "-e", help="Environment"),
    resource_group: str | None = typer.Option(None, "--resource-group", "-g", help="Resource group"),
    location: str | None = typer.Option(None, "--location", "-l", help="Region"),
    skip_validation: bool = typer.Option(False, "--skip-validation", help="Skip az validation"),
    skip_security_scan: bool = typer.Option(False, "--skip-security-scan", help="Skip Checkov"),
):
    """Preview the changes a deployment would make."""
    from bicep_ops.deploy import Action, DeploymentOptions

    _run_pipeline(
        Action.WHAT_IF,
        DeploymentOptions(
            environment=env.value,
            resource_group=resource_group,
            location=location,
            skip_validation=skip_validation,
            skip_security_scan=skip_security_scan,
        ),
    )


@app.command()
@handle_errors
def deploy(
    env: Environment = typer.Option(..., "--env", "-e", help="Environment"),
    resource_group: str | None = typer.Option(None, "--resource-group", "-g", help="Resource group"),
    location: str | None = typer.Option(None, "--location", "-l", help="Region"),
    skip_validation: bool = typer.Option(False, "--skip-validation", help="Skip az validation"),
    skip_security_scan: bool = typer.Option(False, "--skip-security-scan", help="Skip Checkov"),
    what_if: bool = typer.Option(False, "--what-if", help="Preview changes and confirm first"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Deploy the orchestration template to an environment."""
    from bicep_ops.deploy import Action, DeploymentOptions

    _run_pipeline(
        Action.DEPLOY,
        DeploymentOptions(
            environment=env.value,
            resource_group=resource_group,
            location=location,
            skip_validation=skip_validation,
            skip_security_scan=skip_security_scan,
            what_if=what_if,
            assume_yes=yes,
        ),
    )


if __name__ == "__main__":
    app()
