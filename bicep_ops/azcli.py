"""
Boundary to the az CLI.

Every operation runs one ``az`` command and returns its CliResult. A non-zero
exit code is returned to the caller as-is: the deployment engine already
retries and rolls back on its side, so nothing here retries.
"""

import json
import logging
import os
import shutil
import subprocess
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from bicep_ops.exceptions import AzureCliError, AzureCliNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 3600
REDACTED = "***"


def default_executable() -> str:
    return "az.cmd" if os.name == "nt" else "az"


@dataclass
class CliResult:
    """Outcome of one az invocation."""

    command: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def json(self) -> Any:
        """
        Parse stdout as JSON.

        Raises:
            AzureCliError: stdout is not JSON
        """
        if not self.stdout.strip():
            return None
        try:
            return json.loads(self.stdout)
        except json.JSONDecodeError as e:
            raise AzureCliError(f"az returned non-JSON output: {e}") from e

    @property
    def error_message(self) -> str:
        return self.stderr.strip() or self.stdout.strip() or f"exit code {self.returncode}"


@dataclass
class ResourceChange:
    """One resource entry of a what-if result."""

    resource_id: str
    change_type: str

    @property
    def resource_name(self) -> str:
        return self.resource_id.rstrip("/").rsplit("/", 1)[-1]


@dataclass
class WhatIfSummary:
    """Changes the deployment would make."""

    status: str
    changes: list[ResourceChange] = field(default_factory=list)
    error: str | None = None

    @property
    def counts(self) -> dict[str, int]:
        counter = Counter(c.change_type for c in self.changes)
        return {change_type: counter[change_type] for change_type in sorted(counter)}

    @property
    def has_changes(self) -> bool:
        return any(c.change_type not in ("NoChange", "Ignore") for c in self.changes)

    @classmethod
    def from_json(cls, data: dict[str, Any] | None) -> "WhatIfSummary":
        data = data or {}
        changes = [
            ResourceChange(
                resource_id=change.get("resourceId", "unknown"),
                change_type=change.get("changeType", "Unsupported"),
            )
            for change in data.get("changes") or []
        ]
        error = data.get("error")
        if isinstance(error, dict):
            error = error.get("message") or json.dumps(error)
        return cls(status=data.get("status", "Unknown"), changes=changes, error=error)


def redact_command(cmd: list[str], secrets: set[str] | None = None) -> list[str]:
    """
    Copy of cmd with the values of secret ``name=value`` overrides hidden.

    Args:
        cmd: Command line
        secrets: Parameter names whose override values must not be logged
    """
    if not secrets:
        return list(cmd)
    redacted = []
    for arg in cmd:
        name, sep, _ = arg.partition("=")
        redacted.append(f"{name}={REDACTED}" if sep and name in secrets else arg)
    return redacted


class AzureCli:
    """Runs az commands."""

    def __init__(
        self,
        executable: str | None = None,
        subscription: str | None = None,
        timeout: int = DEFAULT_TIMEOUT,
    ):
        self.executable = executable or default_executable()
        self.subscription = subscription
        self.timeout = timeout

    def is_available(self) -> bool:
        return shutil.which(self.executable) is not None

    def run(self, args: list[str], secrets: set[str] | None = None) -> CliResult:
        """
        Run ``az <args>`` and capture its output.

        Raises:
            AzureCliNotFoundError: az is not installed
            AzureCliError: az timed out or could not be started
        """
        path = shutil.which(self.executable)
        if path is None:
            raise AzureCliNotFoundError(self.executable)

        cmd = [path, *args]
        if self.subscription and args[:1] != ["bicep"]:
            cmd.extend(["--subscription", self.subscription])

        display = [self.executable, *redact_command(cmd[1:], secrets)]
        logger.info(f"$ {' '.join(display)}")

        try:
            completed = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            raise AzureCliError(f"az {args[0]} timed out after {self.timeout}s") from e
        except OSError as e:
            raise AzureCliError(f"az execution failed: {e}") from e

        result = CliResult(display, completed.returncode, completed.stdout, completed.stderr)
        if not result.ok:
            logger.warning(f"az {' '.join(args[:3])} exited with {result.returncode}")
        return result

    # Templates

    def bicep_build(self, template: Path, outdir: Path | None = None) -> CliResult:
        args = ["bicep", "build", "--file", str(template)]
        if outdir is not None:
            args.extend(["--outdir", str(outdir)])
        return self.run(args)

    # Resource groups

    def group_exists(self, name: str) -> bool:
        result = self.run(["group", "exists", "--name", name])
        if not result.ok:
            raise AzureCliError(f"Could not check resource group '{name}': {result.error_message}")
        return result.stdout.strip().lower() == "true"

    def group_create(self, name: str, location: str, tags: dict[str, str] | None = None) -> CliResult:
        args = ["group", "create", "--name", name, "--location", location, "--output", "json"]
        if tags:
            args.append("--tags")
            args.extend(f"{key}={value}" for key, value in tags.items())
        return self.run(args)

    # Deployments

    def _deployment_args(
        self,
        operation: str,
        resource_group: str,
        template: Path,
        parameters: Path,
        name: str | None,
        overrides: dict[str, Any] | None,
    ) -> list[str]:
        args = [
            "deployment",
            "group",
            operation,
            "--resource-group",
            resource_group,
            "--template-file",
            str(template),
            "--parameters",
            f"@{parameters}",
        ]
        if overrides:
            args.extend(f"{key}={_override_value(value)}" for key, value in overrides.items())
        if name:
            args.extend(["--name", name])
        return args

    def deployment_validate(
        self,
        resource_group: str,
        template: Path,
        parameters: Path,
        name: str | None = None,
        overrides: dict[str, Any] | None = None,
        secrets: set[str] | None = None,
    ) -> CliResult:
        args = self._deployment_args("validate", resource_group, template, parameters, name, overrides)
        return self.run([*args, "--output", "json"], secrets)

    def deployment_what_if(
        self,
        resource_group: str,
        template: Path,
        parameters: Path,
        name: str | None = None,
        overrides: dict[str, Any] | None = None,
        secrets: set[str] | None = None,
    ) -> tuple[CliResult, WhatIfSummary | None]:
        """Run what-if; the summary is None when az failed."""
        args = self._deployment_args("what-if", resource_group, template, parameters, name, overrides)
        result = self.run([*args, "--no-pretty-print", "--output", "json"], secrets)
        if not result.ok:
            return result, None
        return result, WhatIfSummary.from_json(result.json())

    def deployment_create(
        self,
        resource_group: str,
        template: Path,
        parameters: Path,
        name: str | None = None,
        overrides: dict[str, Any] | None = None,
        secrets: set[str] | None = None,
        mode: str = "Incremental",
    ) -> tuple[CliResult, dict[str, Any]]:
        """Create the deployment; returns the result and the deployment outputs."""
        args = self._deployment_args("create", resource_group, template, parameters, name, overrides)
        result = self.run([*args, "--mode", mode, "--output", "json"], secrets)
        if not result.ok:
            return result, {}
        data = result.json() or {}
        outputs = (data.get("properties") or {}).get("outputs") or {}
        return result, {key: entry.get("value") for key, entry in outputs.items()}


def _override_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)
