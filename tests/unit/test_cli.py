"""Tests for the command line interface."""

from typer.testing import CliRunner

from faultline import __version__
from faultline.cli import app

runner = CliRunner()


class TestCli:
    """Tests for CLI commands."""

    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_config_defaults(self):
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        assert "retry.max_attempts" in result.stdout
        assert "Configuration is valid" in result.stdout

    def test_config_masks_secret(self, tmp_path):
        path = tmp_path / "faultline.yaml"
        path.write_text("security:\n  csrf_secret: do-not-print\n")
        result = runner.invoke(app, ["config", "--config", str(path)])
        assert result.exit_code == 0
        assert "do-not-print" not in result.stdout

    def test_config_invalid(self, tmp_path):
        path = tmp_path / "faultline.yaml"
        path.write_text("retry:\n  max_attempts: 0\n")
        result = runner.invoke(app, ["config", "--config", str(path)])
        assert result.exit_code == 1
        assert "Invalid configuration" in result.stdout
