"""
test_run_scenario.py - Unit tests for the ftcomm-run entry point

Tests:
- Dry run validates the config without touching nodes
- Exit codes for missing and invalid configs
- Result reporting with a patched Coordinator
"""

import sys
from pathlib import Path
from unittest.mock import patch

# Add project root to path
_project_root = Path(__file__).parent.parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

from ftcomm.errors import FilterRuleError, LaunchError
from ftcomm.harness.coordinator import ScenarioResult
from ftcomm.harness.run_scenario import main


FAULT_FREE = str(_project_root / "scenarios" / "fault_free.yaml")
LINK_FAULT = str(_project_root / "scenarios" / "link_fault.yaml")


class TestMain:
    """Test exit codes and output."""

    @patch('ftcomm.harness.run_scenario.Coordinator')
    def test_dry_run(self, mock_coordinator, capsys):
        code = main([LINK_FAULT, "--dry-run"])

        assert code == 0
        mock_coordinator.assert_not_called()
        out = capsys.readouterr().out
        assert "Scenario: link_fault" in out
        assert "Faulted link: 1" in out

    def test_missing_config(self, tmp_path):
        assert main([str(tmp_path / "nope.yaml")]) == 1

    def test_invalid_config(self, tmp_path, capsys):
        path = tmp_path / "bad.yaml"
        path.write_text("test:\n  num_hosts: 1\n")

        assert main([str(path)]) == 1
        assert "inventory" in capsys.readouterr().err

    @patch('ftcomm.harness.run_scenario.Coordinator')
    def test_success(self, mock_coordinator, capsys):
        mock_coordinator.return_value.run.return_value = ScenarioResult(
            scenario="fault_free", success=True, duration_sec=1.5
        )

        code = main([FAULT_FREE, "--seed", "7"])

        assert code == 0
        config = mock_coordinator.call_args.args[1]
        assert config.seed == 7
        assert "SUCCESS" in capsys.readouterr().out

    @patch('ftcomm.harness.run_scenario.Coordinator')
    def test_failure_listed(self, mock_coordinator, capsys):
        mock_coordinator.return_value.run.return_value = ScenarioResult(
            scenario="fault_free", success=False, duration_sec=2.0,
            failures=["HOST(0): message #0 not received"],
        )

        assert main([FAULT_FREE]) == 1
        assert "HOST(0): message #0 not received" in capsys.readouterr().out

    @patch('ftcomm.harness.run_scenario.Coordinator')
    def test_fatal_error(self, mock_coordinator, capsys):
        mock_coordinator.return_value.run.side_effect = LaunchError("EP(0): no route")

        assert main([FAULT_FREE]) == 1
        assert "LaunchError" in capsys.readouterr().err

    @patch('ftcomm.harness.run_scenario.Coordinator')
    def test_filter_misuse_not_reported_as_config(self, mock_coordinator, capsys):
        mock_coordinator.return_value.run.side_effect = FilterRuleError("rule not installed")

        assert main([FAULT_FREE]) == 1
        err = capsys.readouterr().err
        assert "fault injection" in err
        assert "Invalid configuration" not in err

    @patch('ftcomm.harness.run_scenario.Coordinator')
    def test_unexpected_error(self, mock_coordinator, capsys):
        mock_coordinator.return_value.run.side_effect = RuntimeError("node hung")

        assert main([FAULT_FREE]) == 1
        assert "Unexpected error" in capsys.readouterr().err
