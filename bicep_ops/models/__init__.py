"""Configuration records shared across bicep-ops."""

from bicep_ops.models.environment import (
    DEFAULT_ENVIRONMENTS,
    FEATURE_FLAGS,
    Environment,
    EnvironmentProfile,
)
from bicep_ops.models.finding import Finding, has_errors

__all__ = [
    "DEFAULT_ENVIRONMENTS",
    "FEATURE_FLAGS",
    "Environment",
    "EnvironmentProfile",
    "Finding",
    "has_errors",
]
