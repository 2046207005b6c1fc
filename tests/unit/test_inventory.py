"""
test_inventory.py - Unit tests for inventory and YAML config loading

Tests:
- Inventory consistency checks
- Validated node lookup
- Scenario config validation
- YAML loading and error reporting
"""

import pytest
import sys
from pathlib import Path

# Add project root to path
_project_root = Path(__file__).parent.parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

from ftcomm.config.inventory import (
    CommInfo,
    Inventory,
    Node,
    Role,
    SSHInfo,
    default_inventory,
    parse_inventory,
)
from ftcomm.config.scenario import ScenarioConfig, load_config
from ftcomm.errors import InventoryError, UnknownNodeError


def make_node(role, index, ips=("10.0.1.1", "10.0.2.1")):
    return Node(
        role=role,
        index=index,
        comm=CommInfo(ips=tuple(ips), port=14700),
        ssh=SSHInfo(user="root", address="localhost", port=14500 + index),
    )


VALID_YAML = """
inventory:
  links: 2
  comm_port: 15000
  host_executable: /opt/ft/host.elf
  endpoint_executable: /opt/ft/ep.elf
  hosts:
    - ssh: {user: root, address: 10.0.0.1, port: 22}
      ips: [192.168.1.1, 192.168.2.1]
    - ssh: {address: 10.0.0.2, port: 22}
      ips: [192.168.1.2, 192.168.2.2]
  endpoints:
    - ssh: {user: pi, address: 10.0.0.11, port: 2222}
      ips: [192.168.1.11, 192.168.2.11]

test:
  num_hosts: 2
  num_endpoints: 1
  num_messages: 5
  seed: 7
  delivery_timeout_s: 0.5
"""


class TestDefaultInventory:
    """Test the reference lab inventory."""

    def test_population(self):
        inventory = default_inventory()

        assert len(inventory.hosts) == 4
        assert len(inventory.endpoints) == 3
        assert inventory.num_links == 2

    def test_every_node_has_one_address_per_link(self):
        inventory = default_inventory()

        for node in inventory.hosts + inventory.endpoints:
            assert len(node.comm.ips) == inventory.num_links

    def test_addressing_matches_lab(self):
        inventory = default_inventory()

        assert inventory.host(0).comm.ips == ("192.168.1.1", "192.168.2.1")
        assert inventory.endpoint(2).comm.ips == ("192.168.1.13", "192.168.2.13")
        assert inventory.host(3).ssh.port == 14504
        assert inventory.endpoint(0).ssh.port == 14601
        assert inventory.endpoint(0).comm.port == 14700

    def test_launch_argv(self):
        inventory = default_inventory()

        assert inventory.launch_argv(Role.HOST) == [inventory.host_executable, "-i"]
        assert inventory.launch_argv(Role.ENDPOINT) == [inventory.endpoint_executable]


class TestInventoryValidation:
    """Test consistency checks at construction."""

    def test_wrong_address_count_rejected(self):
        with pytest.raises(InventoryError, match="one per link"):
            Inventory(
                hosts=(make_node(Role.HOST, 0, ips=("10.0.1.1",)),),
                endpoints=(make_node(Role.ENDPOINT, 0),),
                num_links=2,
            )

    def test_sparse_indices_rejected(self):
        with pytest.raises(InventoryError, match="index"):
            Inventory(
                hosts=(make_node(Role.HOST, 1),),
                endpoints=(make_node(Role.ENDPOINT, 0),),
                num_links=2,
            )

    def test_role_mismatch_rejected(self):
        with pytest.raises(InventoryError):
            Inventory(
                hosts=(make_node(Role.ENDPOINT, 0),),
                endpoints=(),
                num_links=2,
            )

    def test_zero_links_rejected(self):
        with pytest.raises(InventoryError):
            Inventory(hosts=(), endpoints=(), num_links=0)


class TestNodeLookup:
    """Test validated accessors."""

    def test_lookup_returns_node(self):
        inventory = default_inventory()

        node = inventory.endpoint(1)

        assert node.role is Role.ENDPOINT
        assert node.index == 1
        assert not node.is_host
        assert node.name == "EP(1)"

    def test_out_of_range_raises_unknown_node(self):
        inventory = default_inventory()

        with pytest.raises(UnknownNodeError):
            inventory.host(4)
        with pytest.raises(UnknownNodeError):
            inventory.endpoint(-1)

    def test_role_peer(self):
        assert Role.HOST.peer is Role.ENDPOINT
        assert Role.ENDPOINT.peer is Role.HOST


class TestScenarioConfig:
    """Test scenario parameter validation."""

    def test_defaults(self):
        config = ScenarioConfig()

        assert config.delivery_timeout_s == 2.0
        assert config.queue_capacity == 1000
        assert config.scenario == "fault_free"

    def test_unknown_scenario_rejected(self):
        with pytest.raises(ValueError, match="scenario"):
            ScenarioConfig(scenario="partition")

    def test_non_positive_timeout_rejected(self):
        with pytest.raises(ValueError, match="delivery_timeout_s"):
            ScenarioConfig(delivery_timeout_s=0)

    def test_negative_launch_grace_rejected(self):
        with pytest.raises(ValueError, match="launch_grace_s"):
            ScenarioConfig(launch_grace_s=-1.0)

    def test_bad_fault_action_rejected(self):
        with pytest.raises(ValueError, match="fault_action"):
            ScenarioConfig(fault_action="blackhole")

    def test_population_larger_than_inventory_rejected(self):
        config = ScenarioConfig(num_hosts=5)

        with pytest.raises(ValueError, match="num_hosts"):
            config.check_against(default_inventory())

    def test_fault_link_out_of_range_rejected(self):
        config = ScenarioConfig(scenario="link_fault", fault_link=2)

        with pytest.raises(ValueError, match="fault_link"):
            config.check_against(default_inventory())


class TestLoadConfig:
    """Test YAML loading."""

    def test_load_valid_config(self, tmp_path):
        path = tmp_path / "harness.yaml"
        path.write_text(VALID_YAML)

        inventory, config = load_config(str(path))

        assert len(inventory.hosts) == 2
        assert len(inventory.endpoints) == 1
        assert inventory.host_executable == "/opt/ft/host.elf"
        assert inventory.host(1).ssh.user == "root"
        assert inventory.endpoint(0).ssh.destination == "pi@10.0.0.11"
        assert inventory.endpoint(0).comm.port == 15000
        assert config.num_messages == 5
        assert config.delivery_timeout_s == 0.5

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "missing.yaml"))

    def test_missing_inventory_section(self, tmp_path):
        path = tmp_path / "harness.yaml"
        path.write_text("test:\n  num_hosts: 1\n")

        with pytest.raises(ValueError, match="inventory"):
            load_config(str(path))

    def test_unknown_test_field_rejected(self, tmp_path):
        path = tmp_path / "harness.yaml"
        path.write_text(VALID_YAML + "  retries: 3\n")

        with pytest.raises(ValueError, match="retries"):
            load_config(str(path))

    def test_node_without_ssh_rejected(self):
        with pytest.raises(ValueError, match="ssh"):
            parse_inventory({
                'hosts': [{'ips': ['1.1.1.1', '2.2.2.2']}],
                'endpoints': [],
            })

    def test_shipped_configs_load(self):
        for name in ("fault_free.yaml", "link_fault.yaml"):
            inventory, config = load_config(str(_project_root / "scenarios" / name))
            assert len(inventory.hosts) == 4
            assert config.num_hosts == 4
