"""
Workspace management for bicep-ops.
"""

import copy
import json
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validate

from bicep_ops.exceptions import (
    EnvironmentNotFoundError,
    InvalidConfigError,
    WorkspaceNotFoundError,
)
from bicep_ops.models.environment import DEFAULT_ENVIRONMENTS, EnvironmentProfile
from bicep_ops.naming import NamingConvention, standard_tags

SCHEMA_DIR = Path(__file__).parent / "schema"
CONFIG_FILENAME = "bicep-ops.yaml"


class Workspace:
    """Manages the bicep-ops workspace structure and configuration."""

    REQUIRED_DIRS = [
        "infra/modules",
        "infra/parameters",
        "reports",
        "runs",
    ]

    DEFAULT_CONFIG = {
        "project": {
            "prefix": "contoso",
            "workload": "webapp",
            "location": "eastus2",
            "owner": "platform-team",
        },
        "paths": {
            "templates": "infra",
            "main_template": "infra/main.bicep",
            "parameters": "infra/parameters",
            "rules": "checks.yaml",
        },
        "scan": {
            "config_file": ".checkov.yaml",
            "frameworks": ["bicep", "arm"],
            "soft_fail": False,
            "skip_checks": [],
        },
        "environments": DEFAULT_ENVIRONMENTS,
    }

    def __init__(self, root: Path):
        self.root = Path(root)
        self.config_file = self.root / CONFIG_FILENAME
        self._config_cache: dict[str, Any] | None = None

    def initialize(self) -> None:
        """Initialize workspace directory structure and config."""
        for dir_path in self.REQUIRED_DIRS:
            (self.root / dir_path).mkdir(parents=True, exist_ok=True)

        with open(self.config_file, "w") as f:
            yaml.safe_dump(
                copy.deepcopy(self.DEFAULT_CONFIG), f, default_flow_style=False, sort_keys=False
            )
        self._config_cache = None

    def exists(self) -> bool:
        return self.config_file.exists()

    def require(self) -> "Workspace":
        """Raise WorkspaceNotFoundError unless the config file exists."""
        if not self.exists():
            raise WorkspaceNotFoundError(str(self.root))
        return self

    def load_config(self) -> dict[str, Any]:
        """Load and validate workspace configuration (cached after first load)."""
        if self._config_cache is not None:
            return self._config_cache

        if not self.config_file.exists():
            raise WorkspaceNotFoundError(str(self.root))

        try:
            with open(self.config_file) as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise InvalidConfigError(f"YAML parse error: {e}") from e

        if config is None:
            raise InvalidConfigError(f"Config file is empty: {self.config_file}")

        if not isinstance(config, dict):
            raise InvalidConfigError(f"expected mapping, got {type(config).__name__}")

        self._validate_config_schema(config)

        self._config_cache = config
        return config

    def _validate_config_schema(self, config: dict) -> None:
        """Validate config against JSON schema."""
        schema = json.loads((SCHEMA_DIR / "config.schema.json").read_text())
        try:
            validate(instance=config, schema=schema)
        except ValidationError as e:
            path = ".".join(str(p) for p in e.path) or "root"
            raise InvalidConfigError(f"{e.message} (at {path})") from e

    # Paths

    def _path(self, key: str) -> Path:
        paths = {**self.DEFAULT_CONFIG["paths"], **self.load_config().get("paths", {})}
        return self.root / paths[key]

    @property
    def templates_dir(self) -> Path:
        return self._path("templates")

    @property
    def main_template(self) -> Path:
        return self._path("main_template")

    @property
    def parameters_dir(self) -> Path:
        return self._path("parameters")

    @property
    def rules_file(self) -> Path:
        return self._path("rules")

    @property
    def reports_dir(self) -> Path:
        return self.root / "reports"

    @property
    def runs_dir(self) -> Path:
        return self.root / "runs"

    def parameter_file(self, environment: str) -> Path:
        return self.parameters_dir / f"{environment}.parameters.json"

    # Profiles

    def environments(self) -> list[str]:
        return list(self.load_config().get("environments", {}))

    def profile(self, environment: str) -> EnvironmentProfile:
        """Environment profile with project defaults filled in."""
        config = self.load_config()
        environments = config.get("environments", {})
        if environment not in environments:
            raise EnvironmentNotFoundError(environment, list(environments))

        project = config["project"]
        profile = EnvironmentProfile.from_dict(
            environment, environments[environment] or {}, project["location"]
        )
        if profile.resource_group is None:
            profile.resource_group = self.naming(environment).name("resource_group")
        profile.tags = standard_tags(
            environment,
            project["workload"],
            owner=project.get("owner"),
            cost_center=project.get("cost_center"),
            extra=profile.tags,
        )
        return profile

    def naming(self, environment: str) -> NamingConvention:
        project = self.load_config()["project"]
        return NamingConvention(project["prefix"], project["workload"], environment)

    def plan(self):
        """Module composition plan: the config's 'plan' list or the default plan."""
        from bicep_ops.plan import DeploymentPlan

        modules = self.load_config().get("plan")
        if modules:
            return DeploymentPlan.from_config(modules)
        return DeploymentPlan.default()

    def scan_settings(self) -> dict[str, Any]:
        return {**self.DEFAULT_CONFIG["scan"], **self.load_config().get("scan", {})}
