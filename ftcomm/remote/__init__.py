"""
ftcomm.remote - Everything that touches a node over ssh

- SSHTransport: runs argv on a node
- RemoteProcessController: starts/stops the protocol binary
- FaultInjector: installs/removes iptables rules emulating link faults
"""

from ftcomm.remote.ssh import SSHTransport
from ftcomm.remote.controller import RemoteProcessController
from ftcomm.remote.filters import FaultInjector, FilterRule, Direction, Action

__all__ = [
    'SSHTransport',
    'RemoteProcessController',
    'FaultInjector',
    'FilterRule',
    'Direction',
    'Action',
]
