"""
Tests for workspace management.
"""

import pytest
import yaml

from bicep_ops.exceptions import (
    EnvironmentNotFoundError,
    InvalidConfigError,
    WorkspaceNotFoundError,
)
from bicep_ops.plan import DeploymentPlan
from bicep_ops.workspace import Workspace


def write_config(workspace: Workspace, config: dict) -> None:
    workspace.config_file.write_text(yaml.safe_dump(config))
    workspace._config_cache = None


class TestWorkspaceInit:
    """Tests for Workspace.initialize()."""

    def test_initialize_creates_structure(self, tmp_path):
        workspace = Workspace(tmp_path / "ws")
        workspace.initialize()

        assert workspace.exists()
        for directory in Workspace.REQUIRED_DIRS:
            assert (tmp_path / "ws" / directory).is_dir()

    def test_default_config_is_valid(self, temp_workspace):
        config = temp_workspace.load_config()

        assert config["project"]["prefix"] == "contoso"
        assert temp_workspace.environments() == ["dev", "staging", "prod"]

    def test_require_without_config(self, tmp_path):
        with pytest.raises(WorkspaceNotFoundError) as exc_info:
            Workspace(tmp_path).require()
        assert str(tmp_path) in exc_info.value.message


class TestConfigLoading:
    """Tests for config validation."""

    def test_invalid_yaml(self, temp_workspace):
        temp_workspace.config_file.write_text("project: [unclosed")
        temp_workspace._config_cache = None

        with pytest.raises(InvalidConfigError, match="YAML parse error"):
            temp_workspace.load_config()

    def test_empty_config(self, temp_workspace):
        temp_workspace.config_file.write_text("")
        temp_workspace._config_cache = None

        with pytest.raises(InvalidConfigError, match="empty"):
            temp_workspace.load_config()

    def test_schema_violation_reports_path(self, temp_workspace):
        config = temp_workspace.load_config()
        config["environments"]["prod"]["log_retention_days"] = 7
        write_config(temp_workspace, config)

        with pytest.raises(InvalidConfigError) as exc_info:
            temp_workspace.load_config()
        assert "environments.prod.log_retention_days" in exc_info.value.message

    def test_unknown_environment_name_rejected(self, temp_workspace):
        config = temp_workspace.load_config()
        config["environments"]["qa"] = {}
        write_config(temp_workspace, config)

        with pytest.raises(InvalidConfigError):
            temp_workspace.load_config()

    def test_bad_prefix_rejected(self, temp_workspace):
        config = temp_workspace.load_config()
        config["project"]["prefix"] = "Contoso-EU"
        write_config(temp_workspace, config)

        with pytest.raises(InvalidConfigError, match="project.prefix"):
            temp_workspace.load_config()


class TestProfiles:
    """Tests for environment profiles."""

    def test_profile_defaults(self, temp_workspace):
        profile = temp_workspace.profile("prod")

        assert profile.location == "eastus2"
        assert profile.resource_group == "rg-contoso-webapp-prd"
        assert profile.zone_redundant is True
        assert profile.skus["app_service_plan"] == "P1v3"
        assert profile.feature("enable_ddos_protection") is True
        assert profile.tags["environment"] == "prod"
        assert profile.tags["owner"] == "platform-team"
        assert profile.tags["managedBy"] == "bicep-ops"

    def test_profile_overrides(self, temp_workspace):
        config = temp_workspace.load_config()
        config["environments"]["dev"].update(
            {
                "location": "westeurope",
                "resource_group": "rg-sandbox",
                "tags": {"owner": "team-a"},
                "features": {"enable_diagnostics": False},
            }
        )
        write_config(temp_workspace, config)

        profile = temp_workspace.profile("dev")
        assert profile.location == "westeurope"
        assert profile.resource_group == "rg-sandbox"
        assert profile.tags["owner"] == "team-a"
        assert profile.features == {
            "enable_private_endpoints": False,
            "enable_ddos_protection": False,
            "enable_diagnostics": False,
        }

    def test_empty_environment_entry(self, temp_workspace):
        config = temp_workspace.load_config()
        config["environments"] = {"dev": None}
        write_config(temp_workspace, config)

        profile = temp_workspace.profile("dev")
        assert profile.skus == {}
        assert not any(profile.features.values())

    def test_missing_environment(self, temp_workspace):
        config = temp_workspace.load_config()
        del config["environments"]["staging"]
        write_config(temp_workspace, config)

        with pytest.raises(EnvironmentNotFoundError) as exc_info:
            temp_workspace.profile("staging")
        assert "dev" in exc_info.value.suggestion


class TestPathsAndPlan:
    """Tests for configured paths, plan and scan settings."""

    def test_default_paths(self, temp_workspace):
        root = temp_workspace.root
        assert temp_workspace.main_template == root / "infra" / "main.bicep"
        assert temp_workspace.parameter_file("dev") == root / "infra" / "parameters" / "dev.parameters.json"
        assert temp_workspace.rules_file == root / "checks.yaml"

    def test_custom_paths(self, temp_workspace):
        config = temp_workspace.load_config()
        config["paths"] = {"templates": "bicep", "main_template": "bicep/root.bicep"}
        write_config(temp_workspace, config)

        assert temp_workspace.templates_dir == temp_workspace.root / "bicep"
        assert temp_workspace.main_template == temp_workspace.root / "bicep" / "root.bicep"
        assert temp_workspace.parameters_dir == temp_workspace.root / "infra" / "parameters"

    def test_default_plan(self, temp_workspace):
        assert temp_workspace.plan().names == DeploymentPlan.default().names

    def test_configured_plan(self, temp_workspace):
        config = temp_workspace.load_config()
        config["plan"] = [
            {"name": "logAnalytics", "stage": "monitoring", "template": "modules/log-analytics.bicep"}
        ]
        write_config(temp_workspace, config)

        assert temp_workspace.plan().names == ["logAnalytics"]

    def test_scan_settings_merge(self, temp_workspace):
        config = temp_workspace.load_config()
        config["scan"] = {"soft_fail": True}
        write_config(temp_workspace, config)

        settings = temp_workspace.scan_settings()
        assert settings["soft_fail"] is True
        assert settings["frameworks"] == ["bicep", "arm"]
