"""
filters.py - Fault Injector

Emulates link failures by installing iptables rules on a node that drop or
reject the protocol's TCP traffic with one peer on one link.

Every install returns a FilterRule handle carrying the exact rule
specification that was appended; removal replays that specification with
``-D``. No positional or implicit state is used for reversal.
"""

import logging
import subprocess
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Tuple

from ftcomm.config.inventory import Inventory, Node
from ftcomm.errors import FilterArgumentError, FilterCommandError, FilterRuleError
from ftcomm.remote.ssh import SSHTransport


logger = logging.getLogger(__name__)


class Direction(Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"


class Action(Enum):
    DROP = "DROP"
    REJECT = "REJECT"


@dataclass(frozen=True)
class FilterRule:
    """Handle to an installed filter rule."""
    node: Node
    peer: Node
    link: int
    direction: Direction
    action: Action
    spec: Tuple[str, ...]

    def __str__(self) -> str:
        return (
            f"{self.direction.value} {self.action.value} on {self.node} "
            f"from/to {self.peer} link {self.link}"
        )


TransportFactory = Callable[[Node], SSHTransport]


class FaultInjector:
    """
    Installs and removes packet-filter rules on nodes.

    Commands against one node are serialised by a per-node lock so that
    concurrent scenario drivers never interleave rule edits on the same
    table.
    """

    def __init__(self, inventory: Inventory, transport_factory: TransportFactory = SSHTransport):
        self.inventory = inventory
        self._transport_factory = transport_factory
        self._transports: Dict[Node, SSHTransport] = {}
        self._node_locks: Dict[Node, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._installed: List[FilterRule] = []

    def _lock_for(self, node: Node) -> threading.Lock:
        with self._registry_lock:
            if node not in self._node_locks:
                self._node_locks[node] = threading.Lock()
                self._transports[node] = self._transport_factory(node)
            return self._node_locks[node]

    def _iptables(self, node: Node, args: List[str]):
        cmd = ["iptables", *args]
        try:
            result = self._transports[node].run(cmd)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise FilterCommandError(f"{node}: {' '.join(cmd)} could not run: {e}") from e
        if result.returncode != 0:
            raise FilterCommandError(
                f"{node}: {' '.join(cmd)} failed (exit {result.returncode}): "
                f"{(result.stderr or result.stdout or '').strip()}"
            )

    def build_spec(self, node: Node, peer: Node, link: int, direction: Direction,
                   action: Action) -> Tuple[str, ...]:
        """
        Rule specification (everything after ``-A``/``-D``).

        Raises:
            FilterArgumentError: On invalid direction, action, link or peer
        """
        if not isinstance(direction, Direction):
            raise FilterArgumentError(f"Invalid filter direction: {direction!r}")
        if not isinstance(action, Action):
            raise FilterArgumentError(f"Invalid filter action: {action!r}")
        if not self.inventory.valid_link(link):
            raise FilterArgumentError(
                f"Invalid link {link} (configured links: {self.inventory.num_links})"
            )
        if peer.role is node.role:
            raise FilterArgumentError(f"{node} and {peer} never talk to each other")

        if direction is Direction.INCOMING:
            spec = [
                "INPUT",
                "-p", "tcp",
                "--dport", str(node.comm.port),
                "-s", peer.comm.ip(link),
            ]
        else:
            spec = [
                "OUTPUT",
                "-p", "tcp",
                "--dport", str(peer.comm.port),
                "-d", peer.comm.ip(link),
            ]
        spec += ["-j", action.value]
        return tuple(spec)

    def install(self, node: Node, peer: Node, link: int, direction: Direction,
                action: Action) -> FilterRule:
        """
        Block traffic between node and peer on one link.

        Args:
            node: Node whose filter table is edited
            peer: Node on the other side of the link
            link: Link index
            direction: Filter packets coming in to or going out of node
            action: Silently drop or actively reject

        Returns:
            Handle that removes exactly this rule

        Raises:
            FilterArgumentError: On invalid arguments
            FilterCommandError: If iptables fails
        """
        spec = self.build_spec(node, peer, link, direction, action)
        rule = FilterRule(node=node, peer=peer, link=link, direction=direction,
                          action=action, spec=spec)

        with self._lock_for(node):
            self._iptables(node, ["-A", *spec])
            with self._registry_lock:
                self._installed.append(rule)

        logger.info(f"Installed filter: {rule}")
        return rule

    def remove(self, rule: FilterRule):
        """
        Delete a rule previously returned by install().

        Raises:
            FilterRuleError: If the rule is not currently installed
            FilterCommandError: If iptables fails
        """
        with self._lock_for(rule.node):
            with self._registry_lock:
                if rule not in self._installed:
                    raise FilterRuleError(f"Filter rule not installed: {rule}")
            self._iptables(rule.node, ["-D", *rule.spec])
            with self._registry_lock:
                self._installed.remove(rule)

        logger.info(f"Removed filter: {rule}")

    def remove_all(self):
        """
        Remove every rule still installed, newest first.

        A failing removal does not stop the others; the first failure is
        raised once every rule was attempted.

        Raises:
            FilterCommandError: If any removal failed
        """
        with self._registry_lock:
            pending = list(reversed(self._installed))

        first_error = None
        for rule in pending:
            try:
                self.remove(rule)
            except FilterCommandError as e:
                logger.error(f"Could not remove filter {rule}: {e}")
                if first_error is None:
                    first_error = e
        if first_error is not None:
            raise first_error

    def reset(self, node: Node):
        """
        Flush the node's filter table and forget its handles.

        Raises:
            FilterCommandError: If iptables fails
        """
        with self._lock_for(node):
            self._iptables(node, ["-F"])
            with self._registry_lock:
                self._installed = [r for r in self._installed if r.node != node]

    @property
    def installed(self) -> List[FilterRule]:
        with self._registry_lock:
            return list(self._installed)
