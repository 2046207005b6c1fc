"""
ftcomm.config - Inventory and scenario configuration

Provides the immutable node inventory and YAML-based scenario parsing.
"""

from .inventory import (
    Role,
    SSHInfo,
    CommInfo,
    Node,
    Inventory,
    parse_inventory,
    default_inventory,
)
from .scenario import ScenarioConfig, load_config

__all__ = [
    'Role',
    'SSHInfo',
    'CommInfo',
    'Node',
    'Inventory',
    'parse_inventory',
    'default_inventory',
    'ScenarioConfig',
    'load_config',
]
