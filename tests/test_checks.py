"""
Tests for regex template assertions.
"""

import shutil

import pytest

from bicep_ops.checks import CheckRule, default_rules, load_rules, run_checks
from bicep_ops.exceptions import ConfigurationError
from bicep_ops.report import render_check_report, write_check_report


@pytest.fixture
def infra_dir(tmp_path, fixtures_dir):
    """Copy of the fixture infra directory."""
    target = tmp_path / "infra"
    shutil.copytree(fixtures_dir / "infra", target)
    return target


def results_for(report, rule_id):
    return [r for r in report.results if r.rule.id == rule_id]


class TestCheckRule:
    """Tests for CheckRule validation."""

    def test_invalid_expect(self):
        with pytest.raises(ConfigurationError, match="expect must be one of"):
            CheckRule("X-1", "desc", "x", expect="maybe")

    def test_invalid_severity(self):
        with pytest.raises(ConfigurationError, match="severity"):
            CheckRule("X-1", "desc", "x", severity="info")

    def test_invalid_pattern(self):
        with pytest.raises(ConfigurationError, match="invalid pattern"):
            CheckRule("X-1", "desc", "(unclosed")

    def test_default_rule_ids_are_unique(self):
        ids = [r.id for r in default_rules()]
        assert len(ids) == len(set(ids))


class TestRunChecks:
    """Tests for run_checks() against the fixture templates."""

    def test_compliant_key_vault(self, infra_dir):
        report = run_checks(infra_dir, default_rules())

        for rule_id in ("KV-001", "KV-002", "KV-003"):
            results = results_for(report, rule_id)
            assert [r.status for r in results] == ["passed"]
            assert results[0].file == "modules/key-vault.bicep"

        assert results_for(report, "KV-001")[0].lines == [16]

    def test_public_blob_access_fails(self, infra_dir):
        report = run_checks(infra_dir, default_rules())

        (result,) = results_for(report, "ST-003")
        assert result.status == "failed"
        assert "Pattern not found" in result.detail
        assert not report.success

    def test_rule_without_matching_files_is_skipped(self, infra_dir):
        report = run_checks(infra_dir, default_rules())

        (result,) = results_for(report, "SQL-001")
        assert result.status == "skipped"
        assert result.file is None
        assert "No files match" in result.detail

    def test_absent_rule_reports_lines(self, infra_dir):
        (infra_dir / "modules" / "sql-server.bicep").write_text(
            "resource sql 'Microsoft.Sql/servers@2023-05-01-preview' = {\n"
            "  properties: {\n"
            "    administratorLoginPassword: 'Sup3rSecret!'\n"
            "  }\n"
            "}\n"
        )
        report = run_checks(infra_dir, default_rules())

        failed = [r for r in results_for(report, "SEC-001") if r.status == "failed"]
        assert len(failed) == 1
        assert failed[0].file == "modules/sql-server.bicep"
        assert failed[0].lines == [3]
        assert "line(s) 3" in failed[0].detail

    def test_parameter_reference_is_not_inline_password(self, infra_dir):
        (infra_dir / "modules" / "sql-server.bicep").write_text(
            "param adminPassword string\n"
            "resource sql 'Microsoft.Sql/servers@2023-05-01-preview' = {\n"
            "  properties: {\n"
            "    administratorLoginPassword: adminPassword\n"
            "  }\n"
            "}\n"
        )
        report = run_checks(infra_dir, default_rules())
        assert all(r.status == "passed" for r in results_for(report, "SEC-001"))

    def test_warning_failures_do_not_fail_report(self, tmp_path):
        (tmp_path / "main.bicep").write_text("param tags object\n")
        rule = CheckRule("W-1", "warning only", "enableSomething", "*.bicep", severity="warning")

        report = run_checks(tmp_path, [rule])

        assert report.summary() == {"passed": 0, "failed": 1, "skipped": 0}
        assert report.success

    def test_prod_parameters(self, temp_workspace):
        from bicep_ops.scaffold import write_parameter_files

        write_parameter_files(temp_workspace)
        report = run_checks(temp_workspace.templates_dir, default_rules())

        for rule_id in ("PRM-001", "PRM-002", "PRM-003"):
            assert [r.status for r in results_for(report, rule_id)] == ["passed"]
        assert report.success


class TestLoadRules:
    """Tests for load_rules()."""

    def test_missing_file_returns_defaults(self, tmp_path):
        assert [r.id for r in load_rules(tmp_path / "checks.yaml")] == [r.id for r in default_rules()]

    def test_override_disable_and_add(self, tmp_path):
        path = tmp_path / "checks.yaml"
        path.write_text(
            "rules:\n"
            "  - id: KV-003\n"
            "    severity: error\n"
            "  - id: NET-001\n"
            "    enabled: false\n"
            "  - id: TAG-001\n"
            "    description: Tags passed through\n"
            "    pattern: 'tags:\\s*tags'\n"
            "    files: main.bicep\n"
        )
        rules = {r.id: r for r in load_rules(path)}

        assert rules["KV-003"].severity == "error"
        assert rules["KV-003"].pattern == r"enableRbacAuthorization:\s*true"
        assert "NET-001" not in rules
        assert rules["TAG-001"].pattern == r"tags:\s*tags"
        assert rules["TAG-001"].expect == "present"

    def test_new_rule_needs_pattern(self, tmp_path):
        path = tmp_path / "checks.yaml"
        path.write_text("rules:\n  - id: NEW-1\n    description: no pattern\n")
        with pytest.raises(ConfigurationError, match="missing: pattern"):
            load_rules(path)

    def test_unknown_keys(self, tmp_path):
        path = tmp_path / "checks.yaml"
        path.write_text("rules:\n  - id: KV-001\n    weight: 3\n")
        with pytest.raises(ConfigurationError, match="unknown keys: weight"):
            load_rules(path)

    def test_rules_must_be_list(self, tmp_path):
        path = tmp_path / "checks.yaml"
        path.write_text("rules: KV-001\n")
        with pytest.raises(ConfigurationError, match="'rules' list"):
            load_rules(path)

    def test_scaffolded_rule_file(self, temp_workspace):
        from bicep_ops.scaffold import write_rules_file

        write_rules_file(temp_workspace.rules_file)
        rules = {r.id: r for r in load_rules(temp_workspace.rules_file)}

        assert rules["TAG-001"].severity == "warning"
        assert rules["TAG-001"].regex.search("    tags: tags")


class TestCheckReport:
    """Tests for the markdown check report."""

    def test_report_lists_failures(self, infra_dir, tmp_path):
        report = run_checks(infra_dir, default_rules())
        text = render_check_report(report)

        assert "**Status**: FAILED" in text
        assert "### ST-003: Storage account blocks public blob access" in text
        assert "| KV-001 | error | modules/key-vault.bicep | passed |" in text

        path = write_check_report(report, tmp_path / "reports" / "template-checks.md")
        assert path.read_text().startswith("# Template Check Report")
