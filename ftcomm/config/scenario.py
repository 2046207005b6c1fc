"""
scenario.py - YAML harness configuration

Parses a harness config file into an Inventory and a ScenarioConfig.

Design philosophy:
- Keep it simple: minimal validation, no schema framework
- Fail fast: raise clear exceptions on errors
- Every timing knob is a parameter, none are hardcoded in the coordinator

Example YAML:
    inventory:
      links: 2
      hosts: [...]
      endpoints: [...]

    test:
      scenario: fault_free       # "fault_free" or "link_fault"
      num_hosts: 4
      num_endpoints: 3
      num_messages: 2
      seed: 42
      delivery_timeout_s: 2.0
      fault_link: 1              # link_fault only
      fault_action: drop         # link_fault only: "drop" or "reject"
"""

import yaml
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from ftcomm.config.inventory import Inventory, parse_inventory


SCENARIO_KINDS = ("fault_free", "link_fault")


@dataclass
class ScenarioConfig:
    """
    Test scenario parameters.

    Attributes:
        scenario: Scenario kind ("fault_free" or "link_fault")
        num_hosts: Number of hosts taking part (first N of the inventory)
        num_endpoints: Number of endpoints taking part
        num_messages: Messages sent by every host
        seed: Seed for payload generation
        delivery_timeout_s: Deadline per (endpoint, link) for each message
        startup_delay_s: Pause between starting endpoints and hosts
        settle_s: Pause before teardown removes faults and processes
        launch_grace_s: Time a new ssh session gets to fail before start
            returns
        global_timeout_s: Deadline for the whole run phase
        queue_capacity: Slots per routing queue
        fault_link: Link blocked by the link_fault scenario
        fault_action: "drop" or "reject" for the link_fault scenario
    """
    scenario: str = "fault_free"
    num_hosts: int = 4
    num_endpoints: int = 3
    num_messages: int = 2
    seed: Optional[int] = None
    delivery_timeout_s: float = 2.0
    startup_delay_s: float = 2.0
    settle_s: float = 1.0
    launch_grace_s: float = 0.5
    global_timeout_s: float = 120.0
    queue_capacity: int = 1000
    fault_link: int = 0
    fault_action: str = "drop"

    def __post_init__(self):
        if self.scenario not in SCENARIO_KINDS:
            raise ValueError(
                f"scenario must be one of {', '.join(SCENARIO_KINDS)}, got '{self.scenario}'"
            )
        if self.num_hosts <= 0:
            raise ValueError(f"num_hosts must be positive, got {self.num_hosts}")
        if self.num_endpoints <= 0:
            raise ValueError(f"num_endpoints must be positive, got {self.num_endpoints}")
        if self.num_messages < 0:
            raise ValueError(f"num_messages must be non-negative, got {self.num_messages}")
        for name in ('delivery_timeout_s', 'global_timeout_s'):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        for name in ('startup_delay_s', 'settle_s', 'launch_grace_s'):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative, got {getattr(self, name)}")
        if self.queue_capacity <= 0:
            raise ValueError(f"queue_capacity must be positive, got {self.queue_capacity}")
        if self.fault_action not in ("drop", "reject"):
            raise ValueError(f"fault_action must be 'drop' or 'reject', got '{self.fault_action}'")

    def check_against(self, inventory: Inventory):
        """
        Check the participating population fits the inventory.

        Raises:
            ValueError: If more nodes or links are requested than configured
        """
        if self.num_hosts > len(inventory.hosts):
            raise ValueError(
                f"num_hosts={self.num_hosts} but inventory has {len(inventory.hosts)} hosts"
            )
        if self.num_endpoints > len(inventory.endpoints):
            raise ValueError(
                f"num_endpoints={self.num_endpoints} but inventory has "
                f"{len(inventory.endpoints)} endpoints"
            )
        if self.scenario == "link_fault" and not inventory.valid_link(self.fault_link):
            raise ValueError(
                f"fault_link={self.fault_link} outside [0, {inventory.num_links})"
            )


def parse_scenario_config(data: dict) -> ScenarioConfig:
    """Build a ScenarioConfig from the ``test`` section of a config file."""
    if not isinstance(data, dict):
        raise ValueError("'test' section must be a dict")

    known = set(ScenarioConfig.__dataclass_fields__)
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown field(s) in 'test' section: {', '.join(sorted(unknown))}")

    return ScenarioConfig(**data)


def load_config(yaml_path: str) -> Tuple[Inventory, ScenarioConfig]:
    """
    Load inventory and scenario parameters from a YAML file.

    Args:
        yaml_path: Path to YAML config file

    Returns:
        (Inventory, ScenarioConfig)

    Raises:
        FileNotFoundError: If YAML file doesn't exist
        ValueError: If required sections are missing or invalid
        yaml.YAMLError: If YAML syntax is invalid
    """
    path = Path(yaml_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {yaml_path}")

    with open(path, 'r') as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML syntax in {yaml_path}: {e}")

    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a YAML dict, got {type(data)}")

    if 'inventory' not in data:
        raise ValueError("Missing required section: 'inventory'")

    inventory = parse_inventory(data['inventory'])
    config = parse_scenario_config(data.get('test') or {})
    config.check_against(inventory)

    return inventory, config
