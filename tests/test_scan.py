"""
Tests for the Checkov integration.
"""

import json
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from bicep_ops.exceptions import ScannerError, ScannerNotFoundError
from bicep_ops.report import write_scan_report
from bicep_ops.scan import ScanResult, is_checkov_available, parse_checkov_json, run_checkov

FAILED_CHECK = {
    "check_id": "CKV_AZURE_42",
    "check_name": "Ensure the key vault is recoverable",
    "file_path": "/modules/key-vault.bicep",
    "resource": "Microsoft.KeyVault/vaults.vault",
    "file_line_range": [5, 27],
    "guideline": "https://docs.example.com/ckv-azure-42",
}


def checkov_report(passed=3, failed=1, framework="bicep"):
    return {
        "check_type": framework,
        "results": {"passed_checks": [], "failed_checks": [FAILED_CHECK] * failed},
        "summary": {
            "passed": passed,
            "failed": failed,
            "skipped": 0,
            "parsing_errors": 0,
            "resource_count": 4,
        },
    }


def completed(returncode=0, stdout="", stderr=""):
    result = MagicMock()
    result.returncode = returncode
    result.stdout = stdout
    result.stderr = stderr
    return result


class TestCheckovAvailability:
    """Tests for checkov detection."""

    @patch("bicep_ops.scan.shutil.which")
    def test_available(self, mock_which):
        mock_which.return_value = "/usr/bin/checkov"
        assert is_checkov_available()

    @patch("bicep_ops.scan.shutil.which")
    def test_not_installed_raises(self, mock_which, tmp_path):
        mock_which.return_value = None
        with pytest.raises(ScannerNotFoundError) as exc_info:
            run_checkov(tmp_path)
        assert "--skip-security-scan" in exc_info.value.suggestion


@patch("bicep_ops.scan.shutil.which", return_value="/usr/bin/checkov")
class TestRunCheckov:
    """Tests for run_checkov()."""

    @patch("bicep_ops.scan.subprocess.run")
    def test_command_line(self, mock_run, mock_which, tmp_path):
        config = tmp_path / ".checkov.yaml"
        config.write_text("compact: true\n")
        mock_run.return_value = completed(0, json.dumps(checkov_report(failed=0)))

        run_checkov(tmp_path, config_file=config, soft_fail=True, skip_checks=["CKV_AZURE_1", "CKV_AZURE_2"])

        cmd = mock_run.call_args[0][0]
        assert cmd[:5] == ["checkov", "-d", str(tmp_path), "-o", "json"]
        assert cmd[cmd.index("--framework") + 1 : cmd.index("--framework") + 3] == ["bicep", "arm"]
        assert cmd[cmd.index("--config-file") + 1] == str(config)
        assert "--soft-fail" in cmd
        assert cmd[-2:] == ["--skip-check", "CKV_AZURE_1,CKV_AZURE_2"]

    @patch("bicep_ops.scan.subprocess.run")
    def test_missing_config_file_is_not_passed(self, mock_run, mock_which, tmp_path):
        mock_run.return_value = completed(0, "")
        run_checkov(tmp_path, config_file=tmp_path / "missing.yaml")
        assert "--config-file" not in mock_run.call_args[0][0]

    @patch("bicep_ops.scan.subprocess.run")
    def test_failed_checks(self, mock_run, mock_which, tmp_path):
        mock_run.return_value = completed(1, json.dumps(checkov_report(passed=3, failed=2)))

        result = run_checkov(tmp_path)

        assert result.exit_code == 1
        assert result.passed == 3
        assert result.failed == 2
        assert result.resource_count == 4
        assert not result.success
        assert result.gate(soft_fail=True)
        assert not result.gate()
        assert result.findings[0].line_range == (5, 27)

    @patch("bicep_ops.scan.subprocess.run")
    def test_multiple_frameworks(self, mock_run, mock_which, tmp_path):
        stdout = json.dumps([checkov_report(2, 0, "bicep"), checkov_report(1, 1, "arm")])
        mock_run.return_value = completed(1, stdout)

        result = run_checkov(tmp_path)

        assert result.passed == 3
        assert result.failed == 1
        assert result.resource_count == 8
        assert list(result.findings_by_file()) == ["/modules/key-vault.bicep"]

    @patch("bicep_ops.scan.subprocess.run")
    def test_unexpected_exit_code(self, mock_run, mock_which, tmp_path):
        mock_run.return_value = completed(2, "", "Traceback: boom")
        with pytest.raises(ScannerError, match="exited with code 2: Traceback: boom"):
            run_checkov(tmp_path)

    @patch("bicep_ops.scan.subprocess.run")
    def test_timeout(self, mock_run, mock_which, tmp_path):
        mock_run.side_effect = subprocess.TimeoutExpired("checkov", 600)
        with pytest.raises(ScannerError, match="timed out"):
            run_checkov(tmp_path)

    def test_missing_directory(self, mock_which, tmp_path):
        with pytest.raises(ScannerError, match="does not exist"):
            run_checkov(tmp_path / "infra")

    def test_bad_output_format(self, mock_which, tmp_path):
        with pytest.raises(ValueError, match="Unsupported output format"):
            run_checkov(tmp_path, output="xml")

    @patch("bicep_ops.scan.subprocess.run")
    def test_sarif_uses_exit_code(self, mock_run, mock_which, tmp_path):
        mock_run.return_value = completed(1, '{"version": "2.1.0", "runs": []}')

        result = run_checkov(tmp_path, output="sarif")

        assert result.failed == 0
        assert not result.success


class TestParseCheckovJson:
    """Tests for parse_checkov_json()."""

    def test_empty_summary(self):
        stdout = json.dumps({"passed": 0, "failed": 0, "skipped": 0, "parsing_errors": 0, "resource_count": 0})
        result = parse_checkov_json(stdout, ScanResult(exit_code=0))
        assert result.success
        assert result.findings == []

    def test_parsing_errors_fail_scan(self):
        report = checkov_report(failed=0)
        report["summary"]["parsing_errors"] = 1
        result = parse_checkov_json(json.dumps(report), ScanResult(exit_code=0))
        assert not result.success

    def test_invalid_json(self):
        with pytest.raises(ScannerError, match="Could not parse"):
            parse_checkov_json("not json", ScanResult(exit_code=1))


class TestScanReport:
    """Tests for the scan report."""

    def test_json_report(self, tmp_path):
        result = parse_checkov_json(json.dumps(checkov_report()), ScanResult(exit_code=1))

        path = write_scan_report(result, tmp_path, tmp_path / "reports" / "security-scan.md", soft_fail=True)
        text = path.read_text()

        assert "**Status**: FAILED (soft-fail)" in text
        assert "## `/modules/key-vault.bicep`" in text
        assert "### CKV_AZURE_42: Ensure the key vault is recoverable" in text
        assert "- **Lines**: 5-27" in text

    def test_sarif_report_is_verbatim(self, tmp_path):
        result = ScanResult(exit_code=0, output_format="sarif", stdout='{"runs": []}')
        path = write_scan_report(result, tmp_path, tmp_path / "security-scan.sarif")
        assert path.read_text() == '{"runs": []}'
