"""
Pytest configuration and shared fixtures.
"""

import tempfile
from pathlib import Path

import pytest

from bicep_ops.workspace import Workspace


@pytest.fixture
def temp_workspace():
    """Create a temporary workspace for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        workspace_path = Path(tmpdir)
        workspace = Workspace(workspace_path)
        workspace.initialize()
        yield workspace
        # Cleanup happens automatically when context exits


@pytest.fixture
def fixtures_dir():
    """Return path to test fixtures directory."""
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def main_bicep(fixtures_dir):
    """Return path to the small orchestration template fixture."""
    return fixtures_dir / "infra" / "main.bicep"


@pytest.fixture
def dev_parameters(fixtures_dir):
    """Return path to the dev parameter file fixture."""
    return fixtures_dir / "infra" / "parameters" / "dev.parameters.json"
