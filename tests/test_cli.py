"""Tests for the LuxGen CLI.

Tests cover:
- Main app commands (--help, --version)
- Tenant commands against a seed file (list, show, load, status changes)
- Resolution dry-runs
"""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from luxgen.cli import app
from luxgen.config.tenants_loader import load_tenant_seeds


# ===========================================================================
# Fixtures
# ===========================================================================


@pytest.fixture
def runner() -> CliRunner:
    """Create a CliRunner for testing."""
    return CliRunner()


@pytest.fixture
def seed_file(tmp_path):
    path = tmp_path / "tenants.json"
    path.write_text(
        json.dumps(
            {
                "version": 1,
                "tenants": [
                    {
                        "id": "acme0001",
                        "slug": "acme",
                        "display_name": "Acme",
                        "plan": "basic",
                        "features": ["job-posting", "polls"],
                        "limits": {"jobs": 5},
                    },
                    {
                        "id": "globex01",
                        "slug": "globex",
                        "display_name": "Globex",
                        "status": "suspended",
                    },
                ],
            }
        ),
        encoding="utf-8",
    )
    return path


# ===========================================================================
# Main app
# ===========================================================================


class TestMainApp:
    def test_help(self, runner):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "tenants" in result.output

    def test_version_flag(self, runner):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "LuxGen version" in result.output

    def test_version_command(self, runner):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output


# ===========================================================================
# tenants
# ===========================================================================


class TestTenantsList:
    def test_active_only(self, runner, seed_file):
        result = runner.invoke(app, ["tenants", "list", "--file", str(seed_file)])
        assert result.exit_code == 0
        assert "acme" in result.output
        assert "globex" not in result.output

    def test_all(self, runner, seed_file):
        result = runner.invoke(app, ["tenants", "list", "--all", "--file", str(seed_file)])
        assert result.exit_code == 0
        assert "globex" in result.output

    def test_json(self, runner, seed_file):
        result = runner.invoke(app, ["tenants", "list", "--json", "--file", str(seed_file)])
        assert result.exit_code == 0
        assert '"slug": "acme"' in result.output

    def test_empty(self, runner, tmp_path):
        result = runner.invoke(app, ["tenants", "list", "--file", str(tmp_path / "none.json")])
        assert result.exit_code == 0
        assert "No tenants found" in result.output


class TestTenantsShow:
    def test_show(self, runner, seed_file):
        result = runner.invoke(app, ["tenants", "show", "acme", "--file", str(seed_file)])
        assert result.exit_code == 0
        assert "acme0001" in result.output
        assert "jobs" in result.output

    def test_show_json(self, runner, seed_file):
        result = runner.invoke(app, ["tenants", "show", "acme", "--json", "--file", str(seed_file)])
        assert result.exit_code == 0
        assert '"plan": "basic"' in result.output

    def test_show_unknown(self, runner, seed_file):
        result = runner.invoke(app, ["tenants", "show", "nobody", "--file", str(seed_file)])
        assert result.exit_code == 1


class TestTenantsLoad:
    def test_load_into_new_file(self, runner, seed_file, tmp_path):
        store = tmp_path / "store.json"
        result = runner.invoke(app, ["tenants", "load", str(seed_file), "--file", str(store)])
        assert result.exit_code == 0
        assert "Loaded 2 tenant(s)" in result.output
        assert [t.slug for t in load_tenant_seeds(store).tenants] == ["acme", "globex"]

    def test_dry_run_writes_nothing(self, runner, seed_file, tmp_path):
        store = tmp_path / "store.json"
        result = runner.invoke(
            app, ["tenants", "load", str(seed_file), "--dry-run", "--file", str(store)]
        )
        assert result.exit_code == 0
        assert "valid" in result.output
        assert not store.exists()

    def test_invalid_seed(self, runner, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text(
            json.dumps({"tenants": [{"slug": "a", "display_name": "A"}, {"slug": "a", "display_name": "B"}]}),
            encoding="utf-8",
        )
        result = runner.invoke(app, ["tenants", "load", str(bad), "--dry-run"])
        assert result.exit_code == 1

    def test_missing_seed(self, runner, tmp_path):
        result = runner.invoke(app, ["tenants", "load", str(tmp_path / "missing.json"), "--dry-run"])
        assert result.exit_code == 1


class TestTenantStatus:
    def test_suspend(self, runner, seed_file):
        result = runner.invoke(app, ["tenants", "suspend", "acme", "--file", str(seed_file)])
        assert result.exit_code == 0
        assert "suspended" in result.output
        acme = next(t for t in load_tenant_seeds(seed_file).tenants if t.slug == "acme")
        assert acme.status == "suspended"
        assert acme.id == "acme0001"

    def test_activate(self, runner, seed_file):
        result = runner.invoke(app, ["tenants", "activate", "globex", "--file", str(seed_file)])
        assert result.exit_code == 0
        globex = next(t for t in load_tenant_seeds(seed_file).tenants if t.slug == "globex")
        assert globex.status == "active"

    def test_deactivate_keeps_tenant(self, runner, seed_file):
        result = runner.invoke(app, ["tenants", "deactivate", "acme", "--file", str(seed_file)])
        assert result.exit_code == 0
        assert len(load_tenant_seeds(seed_file).tenants) == 2

    def test_unknown_tenant_leaves_file(self, runner, seed_file):
        before = seed_file.read_text(encoding="utf-8")
        result = runner.invoke(app, ["tenants", "suspend", "nobody", "--file", str(seed_file)])
        assert result.exit_code == 1
        assert seed_file.read_text(encoding="utf-8") == before


# ===========================================================================
# resolve
# ===========================================================================


class TestResolve:
    def test_subdomain(self, runner, seed_file):
        result = runner.invoke(
            app, ["resolve", "--host", "acme.example.com", "--file", str(seed_file)]
        )
        assert result.exit_code == 0
        assert "acme" in result.output
        assert "subdomain" in result.output

    def test_header(self, runner, seed_file):
        result = runner.invoke(app, ["resolve", "--header", "acme", "--file", str(seed_file)])
        assert result.exit_code == 0
        assert "header" in result.output

    def test_path(self, runner, seed_file):
        result = runner.invoke(
            app, ["resolve", "--path", "/tenant/acme/api/jobs", "--file", str(seed_file)]
        )
        assert result.exit_code == 0
        assert "path_param" in result.output

    def test_suspended_tenant(self, runner, seed_file):
        result = runner.invoke(app, ["resolve", "--header", "globex", "--file", str(seed_file)])
        assert result.exit_code == 1

    def test_unresolved(self, runner, seed_file):
        result = runner.invoke(app, ["resolve", "--file", str(seed_file)])
        assert result.exit_code == 1


# ===========================================================================
# serve
# ===========================================================================


class TestServe:
    def test_serve_runs_uvicorn_factory(self, runner):
        with patch("uvicorn.run") as mock_run:
            result = runner.invoke(app, ["serve", "--port", "9001"])
        assert result.exit_code == 0
        mock_run.assert_called_once()
        args, kwargs = mock_run.call_args
        assert args[0] == "luxgen.main:create_app"
        assert kwargs["port"] == 9001
        assert kwargs["factory"] is True
