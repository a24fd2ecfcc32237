"""
Validate / what-if / deploy pipeline.

The pipeline strings together the local checks and the az CLI calls in the
order the deployment wrapper has always used:

    parameters -> plan -> security scan -> build -> resource group
        -> validate -> what-if (+ confirmation) -> deployment

Each step either passes, is skipped, or fails and ends the run. Provisioning
failures are whatever az reports; the pipeline records them and exits 1.
"""

import hashlib
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterator

from rich.console import Console
from rich.prompt import Confirm
from rich.table import Table

from bicep_ops.azcli import AzureCli, WhatIfSummary
from bicep_ops.bicep import check_plan_against_template, parse_template
from bicep_ops.exceptions import (
    AzureCliNotFoundError,
    BicepOpsError,
    ParameterFileNotFoundError,
    PlanError,
    TemplateNotFoundError,
)
from bicep_ops.models.environment import Environment
from bicep_ops.models.finding import has_errors
from bicep_ops.parameters import (
    check_against_template,
    load_parameter_file,
    validate_parameter_file,
)
from bicep_ops.report import write_scan_report
from bicep_ops.scan import run_checkov
from bicep_ops.util.files import ensure_dir, write_json
from bicep_ops.util.progress import show_summary
from bicep_ops.workspace import Workspace

logger = logging.getLogger(__name__)


class Action(str, Enum):
    VALIDATE = "validate"
    WHAT_IF = "what-if"
    DEPLOY = "deploy"


@dataclass
class DeploymentOptions:
    """Switches of one pipeline run."""

    environment: str
    resource_group: str | None = None
    location: str | None = None
    skip_validation: bool = False
    skip_security_scan: bool = False
    what_if: bool = False
    assume_yes: bool = False


@dataclass
class StepResult:
    name: str
    status: str  # passed | failed | skipped | warning
    detail: str = ""


@dataclass
class DeploymentResult:
    """Outcome of a pipeline run."""

    action: Action
    environment: str
    status: str = "running"  # running | succeeded | failed | cancelled
    resource_group: str | None = None
    deployment_name: str | None = None
    steps: list[StepResult] = field(default_factory=list)
    what_if: WhatIfSummary | None = None
    outputs: dict[str, Any] = field(default_factory=dict)
    run_file: Path | None = None

    @property
    def exit_code(self) -> int:
        return 0 if self.status in ("succeeded", "cancelled") else 1

    def step(self, name: str) -> StepResult | None:
        for step in self.steps:
            if step.name == name:
                return step
        return None


def _file_digest(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        while chunk := f.read(8192):
            h.update(chunk)
    return h.hexdigest()


class _StepFailed(Exception):
    """Ends a pipeline run after a failed step has been recorded."""


class DeploymentPipeline:
    """Runs the validate / what-if / deploy sequence for one workspace."""

    def __init__(
        self,
        workspace: Workspace,
        cli: AzureCli | None = None,
        console: Console | None = None,
        confirm: Callable[[str], bool] | None = None,
    ):
        self.workspace = workspace.require()
        self.cli = cli or AzureCli()
        self.console = console or Console()
        self.confirm = confirm or (
            lambda prompt: Confirm.ask(prompt, default=False, console=self.console)
        )

    def run(self, action: Action, options: DeploymentOptions) -> DeploymentResult:
        """
        Run the pipeline.

        Raises:
            BicepOpsError: Workspace, parameter file, template or tool problems
                that have to be fixed before anything can run
        """
        started = datetime.now()
        environment = Environment(options.environment).value
        profile = self.workspace.profile(environment)
        naming = self.workspace.naming(environment)

        resource_group = options.resource_group or profile.resource_group
        location = options.location or profile.location
        template = self.workspace.main_template
        parameters = self.workspace.parameter_file(environment)
        overrides = {"location": options.location} if options.location else None

        result = DeploymentResult(
            action=action,
            environment=environment,
            resource_group=resource_group,
            deployment_name=naming.deployment_name(started),
        )

        if not template.is_file():
            raise TemplateNotFoundError(str(template))
        if not parameters.is_file():
            raise ParameterFileNotFoundError(str(parameters), environment)
        if not self.cli.is_available():
            raise AzureCliNotFoundError(self.cli.executable)
        secrets = {p.name for p in parse_template(template).params.values() if p.secure}

        self._warn_on_skips(environment, options)

        self.console.print(
            f"[bold blue]{action.value.capitalize()}:[/bold blue] environment={environment}, "
            f"resource group={resource_group}, location={location}"
        )

        try:
            with self._step(result, "parameters"):
                self._check_parameters(result, template, parameters, environment)
            with self._step(result, "plan"):
                self._check_plan(result, template, profile.features)
            with self._step(result, "security-scan"):
                self._security_scan(result, options, environment)
            with self._step(result, "build"):
                self._build(result, template, started)
            with self._step(result, "resource-group"):
                self._resource_group(result, action, resource_group, location, profile.tags)
            with self._step(result, "validate"):
                self._validate(
                    result, options, resource_group, template, parameters, overrides, secrets
                )

            if action is Action.WHAT_IF or options.what_if:
                with self._step(result, "what-if"):
                    self._what_if(
                        result, resource_group, template, parameters, overrides, secrets
                    )
                if action is Action.DEPLOY and not options.assume_yes:
                    if not self.confirm("Apply these changes?"):
                        result.steps.append(StepResult("confirm", "skipped", "Declined"))
                        result.status = "cancelled"
                        self.console.print("[yellow]Deployment cancelled[/yellow]")
                        return self._finish(result, started, template, parameters)
                    result.steps.append(StepResult("confirm", "passed"))
            else:
                result.steps.append(StepResult("what-if", "skipped"))

            if action is Action.DEPLOY:
                with self._step(result, "deploy"):
                    self._deploy(
                        result, resource_group, template, parameters, overrides, secrets
                    )

            result.status = "succeeded"
        except _StepFailed:
            result.status = "failed"

        return self._finish(result, started, template, parameters)

    # Steps

    @contextmanager
    def _step(self, result: DeploymentResult, name: str) -> Iterator[None]:
        """Record errors raised inside a step as that step's failure."""
        try:
            yield
        except BicepOpsError as e:
            logger.debug(f"{name} step raised {type(e).__name__}", exc_info=True)
            self._failed(result, name, e.message)

    def _passed(self, result: DeploymentResult, name: str, detail: str = "") -> None:
        result.steps.append(StepResult(name, "passed", detail))
        self.console.print(f"[green]✓ {name}[/green]" + (f" [dim]{detail}[/dim]" if detail else ""))

    def _skipped(self, result: DeploymentResult, name: str, detail: str = "") -> None:
        result.steps.append(StepResult(name, "skipped", detail))
        self.console.print(f"[dim]- {name} skipped {detail}[/dim]")

    def _failed(self, result: DeploymentResult, name: str, detail: str) -> None:
        result.steps.append(StepResult(name, "failed", detail))
        self.console.print(f"[red]✗ {name} failed[/red]")
        self.console.print(detail, markup=False)
        raise _StepFailed(name)

    def _check_parameters(
        self, result: DeploymentResult, template: Path, parameters: Path, environment: str
    ) -> None:
        valid, errors = validate_parameter_file(parameters, environment)
        if not valid:
            self._failed(result, "parameters", "\n".join(errors))
        document = load_parameter_file(parameters, environment)

        findings = check_against_template(document, parse_template(template), str(parameters))
        for finding in findings:
            if not finding.is_error:
                self.console.print(f"[yellow]⚠ {finding}[/yellow]")
        if has_errors(findings):
            self._failed(
                result, "parameters", "\n".join(str(f) for f in findings if f.is_error)
            )
        self._passed(result, "parameters", parameters.name)

    def _check_plan(self, result: DeploymentResult, template: Path, features: dict[str, bool]) -> None:
        plan = self.workspace.plan()
        try:
            modules = plan.resolve(features)
        except PlanError as e:
            self._failed(result, "plan", e.message)

        for finding in check_plan_against_template(plan, parse_template(template)):
            self.console.print(f"[yellow]⚠ {finding}[/yellow]")
        self._passed(result, "plan", f"{len(modules)} module(s)")

    def _security_scan(self, result: DeploymentResult, options: DeploymentOptions, environment: str) -> None:
        if options.skip_security_scan:
            self._skipped(result, "security-scan", "(--skip-security-scan)")
            return

        settings = self.workspace.scan_settings()
        config_file = self.workspace.root / settings["config_file"] if settings.get("config_file") else None
        scan = run_checkov(
            self.workspace.templates_dir,
            config_file=config_file,
            frameworks=settings["frameworks"],
            soft_fail=settings["soft_fail"],
            skip_checks=settings["skip_checks"],
        )
        report = write_scan_report(
            scan,
            self.workspace.templates_dir,
            self.workspace.reports_dir / f"security-scan-{environment}.md",
            soft_fail=settings["soft_fail"],
        )
        detail = f"{scan.passed} passed, {scan.failed} failed (report: {report.name})"
        if not scan.gate(settings["soft_fail"]):
            self._failed(result, "security-scan", detail)
        self._passed(result, "security-scan", detail)

    def _build(self, result: DeploymentResult, template: Path, started: datetime) -> None:
        outdir = ensure_dir(self._run_dir(started))
        build = self.cli.bicep_build(template, outdir)
        if not build.ok:
            self._failed(result, "build", build.error_message)
        self._passed(result, "build", template.name)

    def _resource_group(
        self,
        result: DeploymentResult,
        action: Action,
        name: str,
        location: str,
        tags: dict[str, str],
    ) -> None:
        if self.cli.group_exists(name):
            self._passed(result, "resource-group", f"{name} exists")
            return

        if action is not Action.DEPLOY:
            self._failed(
                result,
                "resource-group",
                f"Resource group '{name}' does not exist. Run deploy to create it, "
                "or pass --resource-group.",
            )

        created = self.cli.group_create(name, location, tags)
        if not created.ok:
            self._failed(result, "resource-group", created.error_message)
        self._passed(result, "resource-group", f"{name} created in {location}")

    def _validate(
        self,
        result: DeploymentResult,
        options: DeploymentOptions,
        resource_group: str,
        template: Path,
        parameters: Path,
        overrides: dict[str, Any] | None,
        secrets: set[str],
    ) -> None:
        if options.skip_validation:
            self._skipped(result, "validate", "(--skip-validation)")
            return

        validation = self.cli.deployment_validate(
            resource_group,
            template,
            parameters,
            name=result.deployment_name,
            overrides=overrides,
            secrets=secrets,
        )
        if not validation.ok:
            self._failed(result, "validate", validation.error_message)
        self._passed(result, "validate")

    def _what_if(
        self,
        result: DeploymentResult,
        resource_group: str,
        template: Path,
        parameters: Path,
        overrides: dict[str, Any] | None,
        secrets: set[str],
    ) -> None:
        run, summary = self.cli.deployment_what_if(
            resource_group,
            template,
            parameters,
            name=result.deployment_name,
            overrides=overrides,
            secrets=secrets,
        )
        if not run.ok or summary is None:
            self._failed(result, "what-if", run.error_message)
        if summary.error:
            self._failed(result, "what-if", summary.error)

        result.what_if = summary
        self._print_what_if(summary)
        self._passed(result, "what-if", f"{len(summary.changes)} resource(s)")

    def _deploy(
        self,
        result: DeploymentResult,
        resource_group: str,
        template: Path,
        parameters: Path,
        overrides: dict[str, Any] | None,
        secrets: set[str],
    ) -> None:
        created, outputs = self.cli.deployment_create(
            resource_group,
            template,
            parameters,
            name=result.deployment_name,
            overrides=overrides,
            secrets=secrets,
        )
        if not created.ok:
            self._failed(result, "deploy", created.error_message)
        result.outputs = outputs
        self._passed(result, "deploy", result.deployment_name)

    # Helpers

    def _warn_on_skips(self, environment: str, options: DeploymentOptions) -> None:
        if environment != Environment.PROD.value:
            return
        for flag, skipped in (
            ("--skip-validation", options.skip_validation),
            ("--skip-security-scan", options.skip_security_scan),
        ):
            if skipped:
                logger.warning(f"{flag} used for a prod deployment")
                self.console.print(f"[yellow]⚠ {flag} used for prod[/yellow]")

    def _print_what_if(self, summary: WhatIfSummary) -> None:
        table = Table(title="What-if changes")
        table.add_column("Change", style="cyan")
        table.add_column("Resource")
        for change in summary.changes:
            if change.change_type in ("NoChange", "Ignore"):
                continue
            table.add_row(change.change_type, change.resource_name)
        if not summary.has_changes:
            self.console.print("[green]No changes[/green]")
            return
        self.console.print(table)
        counts = ", ".join(f"{k}: {v}" for k, v in summary.counts.items()) or "no changes"
        self.console.print(f"[dim]{counts}[/dim]")

    def _run_dir(self, started: datetime) -> Path:
        return self.workspace.runs_dir / started.strftime("%Y-%m-%dT%H-%M-%S")

    def _finish(
        self, result: DeploymentResult, started: datetime, template: Path, parameters: Path
    ) -> DeploymentResult:
        run_file = self._run_dir(started) / f"{result.action.value}.json"
        metadata = {
            "timestamp": started.isoformat(),
            "action": result.action.value,
            "environment": result.environment,
            "resource_group": result.resource_group,
            "deployment_name": result.deployment_name,
            "status": result.status,
            "template": str(template.relative_to(self.workspace.root)),
            "template_sha256": _file_digest(template),
            "parameters": str(parameters.relative_to(self.workspace.root)),
            "parameters_sha256": _file_digest(parameters) if parameters.is_file() else None,
            "steps": [{"name": s.name, "status": s.status, "detail": s.detail} for s in result.steps],
            "what_if": result.what_if.counts if result.what_if else None,
            "outputs": result.outputs,
        }
        write_json(run_file, metadata)
        result.run_file = run_file

        show_summary(
            f"{result.action.value} {result.status}",
            {
                "Environment": result.environment,
                "Resource group": result.resource_group,
                "Deployment": result.deployment_name,
                "Run record": str(run_file.relative_to(self.workspace.root)),
            },
            self.console,
        )
        return result
