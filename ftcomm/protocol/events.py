"""
events.py - Typed protocol events

Events are produced by the OutputDecoder from a node's diagnostic stream
and consumed by scenarios through the routing fabric.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import FrozenSet, Union

from ftcomm.config.inventory import Node, Role


class ReasonCode(IntEnum):
    """Error callback reasons reported by the protocol binaries."""
    HOST_CONNECT_FAIL = 1
    HOST_CONNECT_TERMINATE = 2
    EP_CONNECT_TERMINATE = 4
    EP_HEARTBEAT_FAIL = 5
    EP_INVALID_MSG = 6


HOST_REASONS: FrozenSet[ReasonCode] = frozenset({
    ReasonCode.HOST_CONNECT_FAIL,
    ReasonCode.HOST_CONNECT_TERMINATE,
})

ENDPOINT_REASONS: FrozenSet[ReasonCode] = frozenset({
    ReasonCode.EP_CONNECT_TERMINATE,
    ReasonCode.EP_HEARTBEAT_FAIL,
    ReasonCode.EP_INVALID_MSG,
})


def legal_reasons(role: Role) -> FrozenSet[ReasonCode]:
    """Reasons a node of the given role may report."""
    return HOST_REASONS if role is Role.HOST else ENDPOINT_REASONS


@dataclass(frozen=True)
class MessageEvent:
    """A message from a host, as reported by an endpoint."""
    source: Node
    link: int
    session: int
    sequence: int
    payload: int

    @property
    def peer(self) -> Node:
        return self.source


@dataclass(frozen=True)
class ErrorEvent:
    """An error callback raised by a node about one peer on one link."""
    reason: ReasonCode
    peer: Node
    link: int


ProtocolEvent = Union[MessageEvent, ErrorEvent]


@dataclass(frozen=True)
class HostMessage:
    """Synthetic traffic written to a host's stdin."""
    payload: int

    def encode(self) -> str:
        return f"{self.payload}\n"
