"""
ftcomm.harness - Concurrent coordination core

Routing fabric, node actors, scenario coordinator and the scenarios it runs.
"""

from .fabric import RoutingFabric, EventQueue, QueueKey, Channel, Receipt, ReceiveStatus
from .actor import NodeActor, ActorState, queue_keys
from .coordinator import Coordinator, ScenarioResult, HostReport
from .scenarios import Scenario, FaultFreeScenario, LinkFaultScenario, make_scenario

__all__ = [
    'RoutingFabric',
    'EventQueue',
    'QueueKey',
    'Channel',
    'Receipt',
    'ReceiveStatus',
    'NodeActor',
    'ActorState',
    'queue_keys',
    'Coordinator',
    'ScenarioResult',
    'HostReport',
    'Scenario',
    'FaultFreeScenario',
    'LinkFaultScenario',
    'make_scenario',
]
