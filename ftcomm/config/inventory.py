"""
inventory.py - Static node inventory

Describes the lab: which hosts and endpoints exist, how the harness reaches
them for management (ssh), and which addresses they use to talk to each
other on every link.

The inventory is built once at startup and passed by reference to every
component. It is never mutated afterwards.

Example YAML (the ``inventory`` section of a harness config):

    inventory:
      links: 2
      comm_port: 14700
      host_executable: /opt/ft_comm/host.elf
      endpoint_executable: /opt/ft_comm/ep.elf
      hosts:
        - ssh: {user: root, address: localhost, port: 14501}
          ips: [192.168.1.1, 192.168.2.1]
      endpoints:
        - ssh: {user: root, address: localhost, port: 14601}
          ips: [192.168.1.11, 192.168.2.11]
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Tuple

from ftcomm.errors import InventoryError, UnknownNodeError


DEFAULT_COMM_PORT = 14700
DEFAULT_CODE_DIR = "/home/saksham/ft_comm/"


class Role(Enum):
    """Role of a node in the protocol under test."""
    HOST = "host"
    ENDPOINT = "endpoint"

    @property
    def peer(self) -> "Role":
        """Role on the other end of every connection."""
        return Role.ENDPOINT if self is Role.HOST else Role.HOST


@dataclass(frozen=True)
class SSHInfo:
    """Management access to a node."""
    user: str
    address: str
    port: int

    @property
    def destination(self) -> str:
        return f"{self.user}@{self.address}"


@dataclass(frozen=True)
class CommInfo:
    """Addresses the protocol binaries use to talk to each other."""
    ips: Tuple[str, ...]
    port: int

    def ip(self, link: int) -> str:
        return self.ips[link]


@dataclass(frozen=True)
class Node:
    """
    One host or endpoint.

    Attributes:
        role: Host or endpoint
        index: Position within its role, unique per role
        comm: Communication addressing (one IP per link, shared port)
        ssh: Management addressing
    """
    role: Role
    index: int
    comm: CommInfo
    ssh: SSHInfo

    @property
    def is_host(self) -> bool:
        return self.role is Role.HOST

    @property
    def name(self) -> str:
        return f"HOST({self.index})" if self.is_host else f"EP({self.index})"

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Inventory:
    """
    Immutable lab description.

    Construction validates consistency: indices are dense per role and
    every node exposes exactly ``num_links`` addresses.

    Raises:
        InventoryError: If the description is inconsistent
    """
    hosts: Tuple[Node, ...]
    endpoints: Tuple[Node, ...]
    num_links: int
    host_executable: str = DEFAULT_CODE_DIR + "host.elf"
    endpoint_executable: str = DEFAULT_CODE_DIR + "ep.elf"
    host_args: Tuple[str, ...] = ("-i",)
    endpoint_args: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if self.num_links < 1:
            raise InventoryError(f"num_links must be >= 1, got {self.num_links}")

        for role, nodes in ((Role.HOST, self.hosts), (Role.ENDPOINT, self.endpoints)):
            for position, node in enumerate(nodes):
                if node.role is not role:
                    raise InventoryError(f"{node} listed among {role.value}s")
                if node.index != position:
                    raise InventoryError(
                        f"{role.value} at position {position} has index {node.index}"
                    )
                if len(node.comm.ips) != self.num_links:
                    raise InventoryError(
                        f"{node} has {len(node.comm.ips)} addresses, "
                        f"expected one per link ({self.num_links})"
                    )

    def population(self, role: Role) -> int:
        return len(self.hosts) if role is Role.HOST else len(self.endpoints)

    def node(self, role: Role, index: int) -> Node:
        """
        Validated lookup of a node by role and index.

        Raises:
            UnknownNodeError: If index is outside the configured population
        """
        nodes = self.hosts if role is Role.HOST else self.endpoints
        if not 0 <= index < len(nodes):
            raise UnknownNodeError(
                f"No {role.value} with index {index} "
                f"(configured: {len(nodes)})"
            )
        return nodes[index]

    def host(self, index: int) -> Node:
        return self.node(Role.HOST, index)

    def endpoint(self, index: int) -> Node:
        return self.node(Role.ENDPOINT, index)

    def valid_link(self, link: int) -> bool:
        return 0 <= link < self.num_links

    def executable(self, role: Role) -> str:
        return self.host_executable if role is Role.HOST else self.endpoint_executable

    def launch_argv(self, role: Role) -> List[str]:
        """Command line that starts the protocol binary in the given mode."""
        if role is Role.HOST:
            return [self.host_executable, *self.host_args]
        return [self.endpoint_executable, *self.endpoint_args]


def _build_nodes(role: Role, entries: List[Dict[str, Any]], comm_port: int) -> Tuple[Node, ...]:
    nodes = []
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ValueError(f"{role.value} {i} must be a dict, got {type(entry)}")
        if 'ssh' not in entry:
            raise ValueError(f"{role.value} {i}: Missing required field 'ssh'")
        if 'ips' not in entry:
            raise ValueError(f"{role.value} {i}: Missing required field 'ips'")

        ssh = entry['ssh']
        for key in ('address', 'port'):
            if key not in ssh:
                raise ValueError(f"{role.value} {i}: Missing required field 'ssh.{key}'")

        nodes.append(Node(
            role=role,
            index=i,
            comm=CommInfo(ips=tuple(str(ip) for ip in entry['ips']), port=comm_port),
            ssh=SSHInfo(
                user=str(ssh.get('user', 'root')),
                address=str(ssh['address']),
                port=int(ssh['port']),
            ),
        ))
    return tuple(nodes)


def parse_inventory(data: Dict[str, Any]) -> Inventory:
    """
    Build an Inventory from the ``inventory`` section of a config file.

    Raises:
        ValueError: If required fields are missing
        InventoryError: If the resulting inventory is inconsistent
    """
    if not isinstance(data, dict):
        raise ValueError("'inventory' section must be a dict")

    for section in ('hosts', 'endpoints'):
        if section not in data:
            raise ValueError(f"Missing required section: 'inventory.{section}'")
        if not isinstance(data[section], list):
            raise ValueError(f"'inventory.{section}' must be a list")

    comm_port = int(data.get('comm_port', DEFAULT_COMM_PORT))
    code_dir = data.get('code_dir', DEFAULT_CODE_DIR)

    return Inventory(
        hosts=_build_nodes(Role.HOST, data['hosts'], comm_port),
        endpoints=_build_nodes(Role.ENDPOINT, data['endpoints'], comm_port),
        num_links=int(data.get('links', 2)),
        host_executable=data.get('host_executable', code_dir + "host.elf"),
        endpoint_executable=data.get('endpoint_executable', code_dir + "ep.elf"),
        host_args=tuple(data.get('host_args', ["-i"])),
        endpoint_args=tuple(data.get('endpoint_args', [])),
    )


def default_inventory() -> Inventory:
    """Reference lab: 4 hosts, 3 endpoints, 2 links behind local port forwards."""
    hosts = tuple(
        Node(
            role=Role.HOST,
            index=i,
            comm=CommInfo(ips=(f"192.168.1.{i + 1}", f"192.168.2.{i + 1}"), port=DEFAULT_COMM_PORT),
            ssh=SSHInfo(user="root", address="localhost", port=14501 + i),
        )
        for i in range(4)
    )
    endpoints = tuple(
        Node(
            role=Role.ENDPOINT,
            index=i,
            comm=CommInfo(ips=(f"192.168.1.{i + 11}", f"192.168.2.{i + 11}"), port=DEFAULT_COMM_PORT),
            ssh=SSHInfo(user="root", address="localhost", port=14601 + i),
        )
        for i in range(3)
    )
    return Inventory(hosts=hosts, endpoints=endpoints, num_links=2)
