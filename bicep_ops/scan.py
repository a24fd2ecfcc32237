"""
Security scanning of templates with Checkov.

Runs ``checkov -d <dir>`` and turns its JSON report into a ScanResult. Checkov
is an external tool; pass/fail gating follows its exit code unless the scan
is soft-failed.
"""

import json
import logging
import shutil
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from bicep_ops.exceptions import ScannerError, ScannerNotFoundError

logger = logging.getLogger(__name__)


class ScanOutput(str, Enum):
    """Checkov output formats the scan command supports."""

    JSON = "json"
    SARIF = "sarif"
    CLI = "cli"

    @property
    def report_extension(self) -> str:
        return {"json": "md", "sarif": "sarif", "cli": "txt"}[self.value]


OUTPUT_FORMATS = tuple(o.value for o in ScanOutput)
SCAN_TIMEOUT = 600


@dataclass
class ScanFinding:
    """A failed Checkov check."""

    check_id: str
    check_name: str
    file_path: str
    resource: str
    line_range: tuple[int, int] | None = None
    severity: str | None = None
    guideline: str | None = None

    @classmethod
    def from_checkov(cls, data: dict[str, Any]) -> "ScanFinding":
        line_range = data.get("file_line_range")
        return cls(
            check_id=data.get("check_id", "unknown"),
            check_name=data.get("check_name", ""),
            file_path=data.get("file_path", "unknown"),
            resource=data.get("resource", ""),
            line_range=tuple(line_range) if line_range and len(line_range) == 2 else None,
            severity=data.get("severity"),
            guideline=data.get("guideline"),
        )


@dataclass
class ScanResult:
    """Result of one Checkov run."""

    exit_code: int
    output_format: str = "json"
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    parsing_errors: int = 0
    resource_count: int = 0
    findings: list[ScanFinding] = field(default_factory=list)
    stdout: str | None = None
    stderr: str | None = None

    @property
    def success(self) -> bool:
        """True when Checkov reported no failed checks."""
        if self.output_format == "json":
            return self.failed == 0 and self.parsing_errors == 0
        return self.exit_code == 0

    def gate(self, soft_fail: bool = False) -> bool:
        """Whether the scan lets a deployment proceed."""
        return soft_fail or self.success

    def findings_by_file(self) -> dict[str, list[ScanFinding]]:
        by_file: dict[str, list[ScanFinding]] = {}
        for finding in self.findings:
            by_file.setdefault(finding.file_path, []).append(finding)
        return by_file


def is_checkov_available() -> bool:
    """
    Check if checkov is installed and available.

    Returns:
        True if checkov is on PATH
    """
    return shutil.which("checkov") is not None


def run_checkov(
    directory: Path,
    config_file: Path | None = None,
    output: str = "json",
    frameworks: tuple[str, ...] | list[str] = ("bicep", "arm"),
    soft_fail: bool = False,
    skip_checks: tuple[str, ...] | list[str] = (),
) -> ScanResult:
    """
    Run Checkov on a directory.

    Args:
        directory: Templates directory to scan
        config_file: Optional Checkov config file (.checkov.yaml)
        output: Output format (json, sarif, cli)
        frameworks: Checkov frameworks to run
        soft_fail: Pass --soft-fail so Checkov exits 0 on failed checks
        skip_checks: Check ids to skip

    Returns:
        ScanResult with counts and findings

    Raises:
        ScannerNotFoundError: If checkov is not installed
        ScannerError: If checkov cannot run or its output cannot be read
    """
    if output not in OUTPUT_FORMATS:
        raise ValueError(f"Unsupported output format '{output}'. Use: {', '.join(OUTPUT_FORMATS)}")

    if not is_checkov_available():
        raise ScannerNotFoundError()

    directory = Path(directory)
    if not directory.is_dir():
        raise ScannerError(f"Scan directory does not exist: {directory}")

    cmd = ["checkov", "-d", str(directory), "-o", output]

    if frameworks:
        cmd.extend(["--framework", *frameworks])

    if config_file and Path(config_file).exists():
        cmd.extend(["--config-file", str(config_file)])

    if soft_fail:
        cmd.append("--soft-fail")

    if skip_checks:
        cmd.extend(["--skip-check", ",".join(skip_checks)])

    logger.debug(f"Running: {' '.join(cmd)}")

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=SCAN_TIMEOUT)
    except subprocess.TimeoutExpired as e:
        raise ScannerError(f"checkov timed out after {SCAN_TIMEOUT}s") from e
    except OSError as e:
        raise ScannerError(f"checkov execution failed: {e}") from e

    # checkov returns 0 when all checks pass (or --soft-fail), 1 when checks fail
    if result.returncode not in (0, 1):
        raise ScannerError(
            f"checkov exited with code {result.returncode}: {result.stderr.strip() or result.stdout.strip()}"
        )

    scan = ScanResult(
        exit_code=result.returncode,
        output_format=output,
        stdout=result.stdout,
        stderr=result.stderr,
    )

    if output == "json":
        parse_checkov_json(result.stdout, scan)

    return scan


def parse_checkov_json(stdout: str, scan: ScanResult) -> ScanResult:
    """
    Fill a ScanResult from Checkov's JSON output.

    Checkov prints a single report object, a list of reports (one per
    framework), or a bare summary when nothing was scanned.
    """
    if not stdout.strip():
        return scan

    try:
        data = json.loads(stdout)
    except json.JSONDecodeError as e:
        raise ScannerError(f"Could not parse checkov JSON output: {e}") from e

    reports = data if isinstance(data, list) else [data]
    for report in reports:
        if not isinstance(report, dict):
            continue

        summary = report.get("summary", report)
        scan.passed += int(summary.get("passed", 0))
        scan.failed += int(summary.get("failed", 0))
        scan.skipped += int(summary.get("skipped", 0))
        scan.parsing_errors += int(summary.get("parsing_errors", 0))
        scan.resource_count += int(summary.get("resource_count", 0))

        results = report.get("results", {})
        for failed in results.get("failed_checks", []):
            scan.findings.append(ScanFinding.from_checkov(failed))

    return scan
