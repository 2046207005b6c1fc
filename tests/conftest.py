"""
conftest.py - Shared fixtures
"""

import sys
from pathlib import Path

import pytest

# Add project root to path
_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

from ftcomm.config.inventory import default_inventory
from ftcomm.config.scenario import ScenarioConfig
from ftcomm.remote.filters import FaultInjector
from tests.fakes import FakeCluster, FakeIptables


@pytest.fixture
def inventory():
    """Reference lab: 4 hosts, 3 endpoints, 2 links."""
    return default_inventory()


@pytest.fixture
def iptables():
    return FakeIptables()


@pytest.fixture
def injector(inventory, iptables):
    return FaultInjector(inventory, transport_factory=iptables.transport)


@pytest.fixture
def cluster(inventory):
    return FakeCluster(inventory)


@pytest.fixture
def fast_config():
    """Scenario config with no startup or settle delays."""
    def make(**overrides):
        params = dict(
            num_hosts=4,
            num_endpoints=3,
            num_messages=2,
            seed=42,
            delivery_timeout_s=2.0,
            startup_delay_s=0.0,
            settle_s=0.0,
            global_timeout_s=30.0,
        )
        params.update(overrides)
        return ScenarioConfig(**params)
    return make
