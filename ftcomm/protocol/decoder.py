"""
decoder.py - Output Decoder

Turns a node's diagnostic output, line by line, into typed protocol events.

Each line is offered to an ordered list of matchers; the first matcher that
recognises the line produces the event. Lines nobody recognises are debug
chatter from the binary and are dropped.

A recognised line with malformed or out-of-range content is a breach of the
binary's reporting contract. That raises DecodeError, which aborts the run:
no assertion made after a silently skipped report could be trusted.

Recognised shapes:
    ERROR_CALLBACK(<reason>): EP(<index>:<link>)       (reported by hosts)
    ERROR_CALLBACK(<reason>): HOST(<index>:<link>)     (reported by endpoints)
    Host(<index>:<link>): Session(<n>): MsgNum(<n>): Msg(<n>)  (endpoints)
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import IO, Callable, List, Optional, Sequence

from ftcomm.config.inventory import Inventory, Node, Role
from ftcomm.errors import DecodeError, UnknownNodeError
from ftcomm.protocol.events import (
    ErrorEvent,
    MessageEvent,
    ProtocolEvent,
    ReasonCode,
    legal_reasons,
)


logger = logging.getLogger(__name__)

_INTEGER = re.compile(r'[+-]?[0-9]+')


def parse_int(field: str, text: str, line: str) -> int:
    """Strict integer parse; anything but an optionally signed digit run is fatal."""
    if not _INTEGER.fullmatch(text):
        raise DecodeError(f"Malformed {field} {text!r}", line)
    return int(text)


class LineMatcher(ABC):
    """One recognised line shape."""

    @abstractmethod
    def match(self, line: str) -> Optional[ProtocolEvent]:
        """
        Returns:
            The event described by line, or None if line has another shape

        Raises:
            DecodeError: If line has this shape but malformed content
        """
        pass


class _PeerMatcher(LineMatcher):
    """Shared peer/link validation for matchers that name a remote node."""

    def __init__(self, inventory: Inventory, peer_role: Role):
        self.inventory = inventory
        self.peer_role = peer_role

    def _peer(self, index_text: str, link_text: str, line: str):
        index = parse_int("node index", index_text, line)
        link = parse_int("link", link_text, line)

        try:
            peer = self.inventory.node(self.peer_role, index)
        except UnknownNodeError as e:
            raise DecodeError(str(e), line) from e

        if not self.inventory.valid_link(link):
            raise DecodeError(
                f"Link {link} outside [0, {self.inventory.num_links})", line
            )
        return peer, link


class ErrorReportMatcher(_PeerMatcher):
    """
    ``ERROR_CALLBACK(<reason>): EP(<i>:<link>)`` on hosts,
    ``ERROR_CALLBACK(<reason>): HOST(<i>:<link>)`` on endpoints.
    """

    def __init__(self, inventory: Inventory, reporter: Role):
        super().__init__(inventory, reporter.peer)
        self.reporter = reporter
        tag = "EP" if reporter is Role.HOST else "HOST"
        self.pattern = re.compile(r'ERROR_CALLBACK\((.*?)\): ' + tag + r'\((.*?):(.*?)\)')

    def match(self, line: str) -> Optional[ErrorEvent]:
        m = self.pattern.search(line)
        if m is None:
            return None

        code = parse_int("reason code", m.group(1), line)
        if code not in {r.value for r in legal_reasons(self.reporter)}:
            raise DecodeError(
                f"Reason code {code} is not legal for a {self.reporter.value}", line
            )

        peer, link = self._peer(m.group(2), m.group(3), line)
        return ErrorEvent(reason=ReasonCode(code), peer=peer, link=link)


class MessageReportMatcher(_PeerMatcher):
    """``Host(<i>:<link>): Session(<n>): MsgNum(<n>): Msg(<n>)`` on endpoints."""

    pattern = re.compile(
        r'Host\((.*?):(.*?)\): Session\((.*?)\): MsgNum\((.*?)\): Msg\((.*?)\)'
    )

    def __init__(self, inventory: Inventory):
        super().__init__(inventory, Role.HOST)

    def match(self, line: str) -> Optional[MessageEvent]:
        m = self.pattern.search(line)
        if m is None:
            return None

        source, link = self._peer(m.group(1), m.group(2), line)
        return MessageEvent(
            source=source,
            link=link,
            session=parse_int("session", m.group(3), line),
            sequence=parse_int("message number", m.group(4), line),
            payload=parse_int("message", m.group(5), line),
        )


def matchers_for(inventory: Inventory, role: Role) -> List[LineMatcher]:
    """Default matcher list for a node of the given role, in priority order."""
    if role is Role.HOST:
        return [ErrorReportMatcher(inventory, Role.HOST)]
    return [
        ErrorReportMatcher(inventory, Role.ENDPOINT),
        MessageReportMatcher(inventory),
    ]


class OutputDecoder:
    """
    Decodes the diagnostic stream of one node.

    Usage:
        decoder = OutputDecoder.for_node(node, inventory)
        decoder.pump(stdout, emit=route_event, close=close_queues)
    """

    def __init__(self, matchers: Sequence[LineMatcher], name: str = "decoder"):
        self.matchers = list(matchers)
        self.name = name
        self.lines_read = 0
        self.events_decoded = 0

    @classmethod
    def for_node(cls, node: Node, inventory: Inventory) -> "OutputDecoder":
        return cls(matchers_for(inventory, node.role), name=node.name)

    def decode(self, line: str) -> Optional[ProtocolEvent]:
        """
        Classify one line.

        Returns:
            Event from the first matcher that recognises the line, else None

        Raises:
            DecodeError: If a matcher recognised the line but its content is bad
        """
        for matcher in self.matchers:
            event = matcher.match(line)
            if event is not None:
                return event
        return None

    def pump(self, stream: IO[str], emit: Callable[[ProtocolEvent], None],
             close: Callable[[], None]):
        """
        Read stream until end-of-input, emitting one event per recognised line.

        close() is called exactly once, after end-of-input. It is not called
        when decoding fails; the DecodeError propagates instead.
        """
        for line in iter(stream.readline, ''):
            self.lines_read += 1
            event = self.decode(line)
            if event is None:
                logger.debug(f"{self.name}: ignoring {line.rstrip()!r}")
                continue
            self.events_decoded += 1
            emit(event)

        logger.info(
            f"{self.name}: end of output after {self.lines_read} lines, "
            f"{self.events_decoded} events"
        )
        close()
