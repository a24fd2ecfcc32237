"""Findings reported by the static checks (parameters, plan, template)."""

from dataclasses import dataclass


@dataclass
class Finding:
    """One problem found while checking configuration against a template."""

    severity: str  # error | warning
    message: str
    location: str | None = None

    @property
    def is_error(self) -> bool:
        return self.severity == "error"

    def __str__(self):
        if self.location:
            return f"{self.location}: {self.message}"
        return self.message


def has_errors(findings: list[Finding]) -> bool:
    return any(f.is_error for f in findings)
