"""
Template text assertions.

Each rule is a regular expression that must be present in (or absent from)
every file matched by a glob under the templates directory. This is the same
kind of check as grepping a template for ``enablePurgeProtection: true``: it
verifies that configuration keywords are written down, not that the deployed
resource behaves.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from bicep_ops.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

EXPECT_VALUES = ("present", "absent")
SEVERITY_VALUES = ("error", "warning")


@dataclass
class CheckRule:
    """A regex assertion over template files."""

    id: str
    description: str
    pattern: str
    files: str = "**/*.bicep"
    expect: str = "present"
    severity: str = "error"

    def __post_init__(self):
        if self.expect not in EXPECT_VALUES:
            raise ConfigurationError(
                f"Rule {self.id}: expect must be one of {', '.join(EXPECT_VALUES)}, got '{self.expect}'"
            )
        if self.severity not in SEVERITY_VALUES:
            raise ConfigurationError(
                f"Rule {self.id}: severity must be one of {', '.join(SEVERITY_VALUES)}, "
                f"got '{self.severity}'"
            )
        try:
            self.regex = re.compile(self.pattern, re.MULTILINE)
        except re.error as e:
            raise ConfigurationError(f"Rule {self.id}: invalid pattern '{self.pattern}': {e}") from e

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "pattern": self.pattern,
            "files": self.files,
            "expect": self.expect,
            "severity": self.severity,
        }


def _rule(id, description, pattern, files="**/*.bicep", expect="present", severity="error"):
    return CheckRule(id, description, pattern, files, expect, severity)


DEFAULT_RULES = [
    _rule("KV-001", "Key Vault has purge protection enabled",
          r"enablePurgeProtection:\s*true", "**/key-vault*.bicep"),
    _rule("KV-002", "Key Vault has soft delete enabled",
          r"enableSoftDelete:\s*true", "**/key-vault*.bicep"),
    _rule("KV-003", "Key Vault uses RBAC authorization",
          r"enableRbacAuthorization:\s*true", "**/key-vault*.bicep", severity="warning"),
    _rule("ST-001", "Storage account requires TLS 1.2",
          r"minimumTlsVersion:\s*'TLS1_2'", "**/storage-account*.bicep"),
    _rule("ST-002", "Storage account accepts HTTPS traffic only",
          r"supportsHttpsTrafficOnly:\s*true", "**/storage-account*.bicep"),
    _rule("ST-003", "Storage account blocks public blob access",
          r"allowBlobPublicAccess:\s*false", "**/storage-account*.bicep"),
    _rule("SQL-001", "SQL server requires TLS 1.2",
          r"minimalTlsVersion:\s*'1\.2'", "**/sql-server*.bicep"),
    _rule("SQL-002", "SQL database configures transparent data encryption",
          r"transparentDataEncryption", "**/sql-database*.bicep"),
    _rule("SQL-003", "SQL server has auditing configured",
          r"auditingSettings", "**/sql-server*.bicep", severity="warning"),
    _rule("APP-001", "App Service is HTTPS only",
          r"httpsOnly:\s*true", "**/app-service.bicep"),
    _rule("APP-002", "App Service requires TLS 1.2",
          r"minTlsVersion:\s*'1\.2'", "**/app-service.bicep"),
    _rule("APP-003", "App Service disables plain FTP",
          r"ftpsState:\s*'(Disabled|FtpsOnly)'", "**/app-service.bicep", severity="warning"),
    _rule("NET-001", "Network security groups define a deny rule",
          r"access:\s*'Deny'", "**/network-security-groups*.bicep"),
    _rule("MON-001", "Diagnostic settings are deployed",
          r"Microsoft\.Insights/diagnosticSettings", "**/diagnostic-settings*.bicep"),
    _rule("SEC-001", "No inline passwords or connection strings",
          r"(?i)\b\w*(password|connectionstring)\w*\s*:\s*'[^'$]+'", expect="absent"),
    _rule("SEC-002", "No default values for secret parameters",
          r"(?i)^\s*param\s+\w*(password|secret)\w*\s+string\s*=", expect="absent"),
    _rule("PRM-001", "Production enables private endpoints",
          r'"enablePrivateEndpoints"\s*:\s*\{\s*"value"\s*:\s*true', "**/prod.parameters.json"),
    _rule("PRM-002", "Production enables DDoS protection",
          r'"enableDdosProtection"\s*:\s*\{\s*"value"\s*:\s*true', "**/prod.parameters.json"),
    _rule("PRM-003", "Production is zone redundant",
          r'"zoneRedundant"\s*:\s*\{\s*"value"\s*:\s*true', "**/prod.parameters.json",
          severity="warning"),
]


@dataclass
class CheckResult:
    """Outcome of one rule against one file (or against no file at all)."""

    rule: CheckRule
    status: str  # passed | failed | skipped
    file: str | None = None
    detail: str = ""
    lines: list[int] = field(default_factory=list)


@dataclass
class CheckReport:
    """All results of a rule run."""

    root: Path
    results: list[CheckResult] = field(default_factory=list)

    def count(self, status: str) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def failures(self) -> list[CheckResult]:
        return [r for r in self.results if r.status == "failed"]

    @property
    def error_failures(self) -> list[CheckResult]:
        return [r for r in self.failures if r.rule.severity == "error"]

    @property
    def success(self) -> bool:
        return not self.error_failures

    def summary(self) -> dict[str, int]:
        return {
            "passed": self.count("passed"),
            "failed": self.count("failed"),
            "skipped": self.count("skipped"),
        }


def default_rules() -> list[CheckRule]:
    return [CheckRule(**r.to_dict()) for r in DEFAULT_RULES]


def load_rules(path: Path | None) -> list[CheckRule]:
    """
    Built-in rules merged with a YAML rule file.

    The file holds ``rules:``, a list of rule mappings. A rule whose id matches
    a built-in rule overrides the given fields; ``enabled: false`` removes it.

    Raises:
        ConfigurationError: Unreadable file or invalid rule
    """
    rules = {rule.id: rule for rule in default_rules()}

    if path is None or not Path(path).exists():
        return list(rules.values())

    try:
        data = yaml.safe_load(Path(path).read_text()) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in rule file {path}: {e}") from e

    entries = data.get("rules", []) if isinstance(data, dict) else None
    if not isinstance(entries, list):
        raise ConfigurationError(f"Rule file {path} must contain a 'rules' list")

    for entry in entries:
        if not isinstance(entry, dict) or "id" not in entry:
            raise ConfigurationError(f"Every rule in {path} needs an 'id'")
        entry = dict(entry)
        rule_id = str(entry.pop("id"))
        enabled = entry.pop("enabled", True)

        if not enabled:
            rules.pop(rule_id, None)
            continue

        base = rules[rule_id].to_dict() if rule_id in rules else {}
        merged = {**base, **entry, "id": rule_id}
        missing = [key for key in ("description", "pattern") if key not in merged]
        if missing:
            raise ConfigurationError(f"Rule {rule_id} in {path} is missing: {', '.join(missing)}")
        unknown = set(merged) - set(CheckRule.__dataclass_fields__)
        if unknown:
            raise ConfigurationError(
                f"Rule {rule_id} in {path} has unknown keys: {', '.join(sorted(unknown))}"
            )
        rules[rule_id] = CheckRule(**merged)
        logger.debug(f"Loaded rule {rule_id} from {path}")

    return list(rules.values())


def run_checks(root: Path, rules: list[CheckRule]) -> CheckReport:
    """
    Run rules over files under root.

    A rule whose glob matches no file is reported once as skipped.
    """
    root = Path(root)
    report = CheckReport(root=root)

    for rule in rules:
        files = sorted(p for p in root.glob(rule.files) if p.is_file())
        if not files:
            report.results.append(
                CheckResult(rule, "skipped", detail=f"No files match '{rule.files}'")
            )
            continue

        for file in files:
            report.results.append(_check_file(rule, file, root))

    return report


def _check_file(rule: CheckRule, file: Path, root: Path) -> CheckResult:
    relative = str(file.relative_to(root))
    try:
        text = file.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Failed to read {file}: {e}")
        return CheckResult(rule, "failed", relative, f"Unreadable: {e}")

    matches = list(rule.regex.finditer(text))
    lines = [text.count("\n", 0, m.start()) + 1 for m in matches]

    if rule.expect == "present":
        if matches:
            return CheckResult(rule, "passed", relative, lines=lines)
        return CheckResult(rule, "failed", relative, f"Pattern not found: {rule.pattern}")

    if matches:
        where = ", ".join(str(n) for n in lines)
        return CheckResult(rule, "failed", relative, f"Forbidden pattern on line(s) {where}", lines)
    return CheckResult(rule, "passed", relative)
