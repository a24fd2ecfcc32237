"""
Markdown reports for template checks and security scans.
"""

from pathlib import Path

from bicep_ops.checks import CheckReport
from bicep_ops.scan import ScanResult
from bicep_ops.util.files import write_text
from bicep_ops.util.templates import TemplateLoader


def render_check_report(report: CheckReport, loader: TemplateLoader | None = None) -> str:
    loader = loader or TemplateLoader()
    return loader.render("check-report.md.j2", {"report": report, "summary": report.summary()})


def render_scan_report(
    result: ScanResult,
    directory: Path,
    soft_fail: bool = False,
    loader: TemplateLoader | None = None,
) -> str:
    loader = loader or TemplateLoader()
    return loader.render(
        "scan-report.md.j2",
        {"result": result, "directory": directory, "soft_fail": soft_fail},
    )


def write_check_report(report: CheckReport, path: Path) -> Path:
    write_text(path, render_check_report(report))
    return path


def write_scan_report(result: ScanResult, directory: Path, path: Path, soft_fail: bool = False) -> Path:
    """
    Write the scan report.

    Non-JSON scans keep Checkov's own output (SARIF or CLI text) verbatim.
    """
    if result.output_format == "json":
        write_text(path, render_scan_report(result, directory, soft_fail))
    else:
        write_text(path, result.stdout or "")
    return path
