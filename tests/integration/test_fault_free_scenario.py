"""
test_fault_free_scenario.py - End-to-end runs on the simulated lab

Drives the Coordinator against FakeCluster: every remote process, filter
table and ssh command is simulated in-process.

Tests:
- Full 4 hosts x 3 endpoints x 2 links delivery with zero errors
- Setup and teardown housekeeping on every participating node
- Scenario failures: delivery timeout, payload mismatch, unexpected errors,
  global deadline
- Fatal errors: malformed report, launch failure
"""

import pytest
import sys
from pathlib import Path

# Add project root to path
_project_root = Path(__file__).parent.parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

from ftcomm.errors import DecodeError, LaunchError
from ftcomm.harness.coordinator import Coordinator
from ftcomm.harness.scenarios import FaultFreeScenario
from ftcomm.remote.filters import FaultInjector


def make_coordinator(inventory, config, cluster, injector=None):
    return Coordinator(
        inventory,
        config,
        controller_factory=cluster.controller,
        injector=injector or FaultInjector(inventory, transport_factory=cluster.transport),
        stop_timeout_s=2.0,
    )


class TestFaultFreeDelivery:
    """Test the fault-free scenario end to end."""

    def test_every_message_everywhere(self, inventory, cluster, fast_config):
        config = fast_config()
        coordinator = make_coordinator(inventory, config, cluster)

        result = coordinator.run(FaultFreeScenario(config))

        assert result.success, result.failures
        assert result.messages_sent == 4 * 2
        assert result.deliveries == 4 * 3 * 2 * 2
        assert result.tolerated_errors == 0
        assert len(result.reports) == 4

    def test_endpoints_start_before_hosts(self, inventory, cluster, fast_config):
        config = fast_config(num_messages=1)
        coordinator = make_coordinator(inventory, config, cluster)

        coordinator.run(FaultFreeScenario(config))

        roles = [node.role.value for node in cluster.launched]
        assert roles == ["endpoint"] * 3 + ["host"] * 4

    def test_partial_population(self, inventory, cluster, fast_config):
        config = fast_config(num_hosts=2, num_endpoints=1, num_messages=3)
        coordinator = make_coordinator(inventory, config, cluster)

        result = coordinator.run(FaultFreeScenario(config))

        assert result.success, result.failures
        assert result.deliveries == 2 * 1 * 2 * 3
        assert len(cluster.launched) == 3

    def test_housekeeping(self, inventory, cluster, fast_config):
        config = fast_config(num_messages=1)
        coordinator = make_coordinator(inventory, config, cluster)

        coordinator.run(FaultFreeScenario(config))

        for node in list(inventory.hosts) + list(inventory.endpoints):
            argvs = [argv for n, argv in cluster.iptables.commands if n == node]
            # reset at setup and at teardown
            assert argvs.count(("iptables", "-F")) == 2
            assert ("killall", inventory.host_executable) in argvs
            assert ("killall", inventory.endpoint_executable) in argvs
        assert all(not p.alive for p in cluster.processes.values())
        assert len(coordinator.fabric) == 0


class TestScenarioFailures:
    """Test violated expectations."""

    def test_delivery_timeout(self, inventory, cluster, fast_config):
        cluster.silent_endpoints.add(2)
        config = fast_config(num_hosts=2, delivery_timeout_s=0.2)
        coordinator = make_coordinator(inventory, config, cluster)

        result = coordinator.run(FaultFreeScenario(config))

        assert not result.success
        assert len(result.failures) == 2
        assert all("not received by EP(2)" in f for f in result.failures)

    def test_payload_mismatch(self, inventory, cluster, fast_config):
        cluster.payload_offset = 1
        config = fast_config(num_hosts=1, num_endpoints=1, num_messages=1)
        coordinator = make_coordinator(inventory, config, cluster)

        result = coordinator.run(FaultFreeScenario(config))

        assert not result.success
        assert "expected" in result.failures[0]

    def test_error_on_healthy_link(self, inventory, cluster, fast_config):
        cluster.spurious_error_link = 0
        config = fast_config(num_hosts=1, num_endpoints=2, num_messages=1)
        coordinator = make_coordinator(inventory, config, cluster)

        result = coordinator.run(FaultFreeScenario(config))

        assert not result.success
        assert "EP_INVALID_MSG" in result.failures[0]
        assert result.deliveries == 1 * 2 * 2
        assert result.error_events == 1
        assert result.tolerated_errors == 0

    def test_global_deadline(self, inventory, cluster, fast_config):
        cluster.silent_endpoints.add(0)
        config = fast_config(num_hosts=1, num_endpoints=1,
                             delivery_timeout_s=10.0, global_timeout_s=0.3)
        coordinator = make_coordinator(inventory, config, cluster)

        result = coordinator.run(FaultFreeScenario(config))

        assert not result.success
        assert any("overran" in f for f in result.failures)
        assert result.duration_sec < 10.0


class TestFatalErrors:
    """Test run aborts."""

    def test_malformed_report_aborts(self, inventory, cluster, fast_config):
        cluster.malformed_report = True
        config = fast_config(delivery_timeout_s=10.0)
        coordinator = make_coordinator(inventory, config, cluster)

        with pytest.raises(DecodeError):
            coordinator.run(FaultFreeScenario(config))

        assert all(not p.alive for p in cluster.processes.values())
        assert len(coordinator.fabric) == 0

    def test_launch_failure_aborts(self, inventory, cluster, fast_config):
        cluster.fail_launch.add("EP(1)")
        config = fast_config()
        coordinator = make_coordinator(inventory, config, cluster)

        with pytest.raises(LaunchError):
            coordinator.run(FaultFreeScenario(config))

        # EP(0) was started and must have been stopped again
        assert [n.name for n in cluster.launched] == ["EP(0)"]
        assert not cluster.processes[inventory.endpoint(0)].alive
