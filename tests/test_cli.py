"""Tests for argument parsing and command dispatch."""

from pathlib import Path
from unittest.mock import patch

import pytest

from thw_switchkit.cli import main


def run_cli(*argv):
    with patch("sys.argv", ["thw-switchkit", *argv]):
        main()


class TestCli:

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc:
            run_cli("--version")
        assert exc.value.code == 0
        assert "THW-SwitchKit v" in capsys.readouterr().out

    def test_switch_arguments(self):
        with patch("thw_switchkit.toolkit.commands.switch.manage_switch", return_value=True) as manage:
            run_cli("--config", "/tmp/c.toml", "switch", "--pair", "1", "--dry-run", "-y")
        manage.assert_called_once_with(pair_index=1, dry_run=True, interactive=False, config_path="/tmp/c.toml")

    def test_failed_switch_exits_nonzero(self):
        with patch("thw_switchkit.toolkit.commands.switch.manage_switch", return_value=False):
            with pytest.raises(SystemExit) as exc:
                run_cli("switch")
        assert exc.value.code == 1

    def test_monitor_arguments(self):
        with patch("thw_switchkit.toolkit.commands.monitor.run_monitor", return_value=True) as monitor:
            run_cli("monitor")
        monitor.assert_called_once_with(config_path=None, pair_index=None)

    def test_command_required(self):
        with pytest.raises(SystemExit) as exc:
            run_cli()
        assert exc.value.code == 2


class TestPackaging:

    def test_project_metadata(self):
        from thw_switchkit.config import tomli

        with open(Path(__file__).resolve().parent.parent / "pyproject.toml", "rb") as f:
            project = tomli.load(f)["project"]

        assert "readme" not in project
        assert project["scripts"]["thw-switchkit"] == "thw_switchkit.cli:main"
