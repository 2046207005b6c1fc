"""
fabric.py - Event Routing Fabric

A set of bounded FIFO queues, one per (owner node, channel, peer, link),
that decouples the decoder threads producing events from the scenario
drivers consuming them.

Each node gets O(peers x links) independent queues so ordering holds per
peer per link while different peers and links never block each other.

Queue contract:
- send() never blocks; a full queue is a sizing defect (FabricOverflowError)
- receive() blocks up to a deadline and returns a Receipt whose status is
  EVENT, TIMEOUT or CLOSED; a timeout is never reported as an event
- close() is called exactly once, by the decoder at end of output; pending
  events drain before CLOSED is reported; a second close is rejected
- abort() wakes every receiver with HarnessAborted after a fatal error
"""

import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Optional

from ftcomm.config.inventory import Node, Role
from ftcomm.errors import (
    FabricOverflowError,
    HarnessAborted,
    QueueClosedError,
    UnknownQueueError,
)
from ftcomm.protocol.events import ProtocolEvent


DEFAULT_CAPACITY = 1000


class Channel(Enum):
    MESSAGES = "messages"
    ERRORS = "errors"


@dataclass(frozen=True)
class QueueKey:
    """Address of one queue: events seen by owner about peer on link."""
    owner_role: Role
    owner_index: int
    channel: Channel
    peer_index: int
    link: int

    @classmethod
    def of(cls, owner: Node, channel: Channel, peer_index: int, link: int) -> "QueueKey":
        return cls(owner.role, owner.index, channel, peer_index, link)

    def __str__(self) -> str:
        owner = "HOST" if self.owner_role is Role.HOST else "EP"
        peer = "EP" if self.owner_role is Role.HOST else "HOST"
        return (
            f"{owner}({self.owner_index}) {self.channel.value} "
            f"from {peer}({self.peer_index}) link {self.link}"
        )


class ReceiveStatus(Enum):
    EVENT = "event"
    TIMEOUT = "timeout"
    CLOSED = "closed"


@dataclass(frozen=True)
class Receipt:
    """Outcome of a receive."""
    status: ReceiveStatus
    event: Optional[ProtocolEvent] = None

    @property
    def ok(self) -> bool:
        return self.status is ReceiveStatus.EVENT

    @property
    def timed_out(self) -> bool:
        return self.status is ReceiveStatus.TIMEOUT

    @property
    def closed(self) -> bool:
        return self.status is ReceiveStatus.CLOSED


_TIMEOUT = Receipt(ReceiveStatus.TIMEOUT)
_CLOSED_RECEIPT = Receipt(ReceiveStatus.CLOSED)

# Markers travelling through the underlying queue
_CLOSED = object()
_ABORTED = object()


class EventQueue:
    """
    Bounded, closable FIFO.

    Built on queue.Queue; closure and abort are signalled by marker objects
    that are put back after being read so every later reader sees them too.
    """

    def __init__(self, key: QueueKey, capacity: int = DEFAULT_CAPACITY):
        self.key = key
        self.capacity = capacity
        self._queue: queue.Queue = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False
        self._failure: Optional[BaseException] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def put(self, event: ProtocolEvent):
        with self._lock:
            if self._closed:
                raise QueueClosedError(f"Send on closed queue: {self.key}")
            if self._queue.qsize() >= self.capacity:
                raise FabricOverflowError(
                    f"Queue full ({self.capacity} events): {self.key}"
                )
            self._queue.put_nowait(event)

    def close(self):
        with self._lock:
            if self._closed:
                raise QueueClosedError(f"Queue closed twice: {self.key}")
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    def abort(self, cause: BaseException):
        with self._lock:
            if self._failure is not None:
                return
            self._failure = cause
            self._queue.put_nowait(_ABORTED)

    def _raise_aborted(self):
        raise HarnessAborted(
            f"Harness aborted while reading {self.key}: {self._failure}"
        ) from self._failure

    def get(self, timeout: Optional[float]) -> Receipt:
        """
        Args:
            timeout: Seconds to wait; 0 polls; None waits until an event,
                closure or abort
        """
        if self._failure is not None:
            self._raise_aborted()

        try:
            if timeout is not None and timeout <= 0:
                item = self._queue.get_nowait()
            else:
                item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return _TIMEOUT

        if item is _ABORTED:
            self._queue.put_nowait(item)
            self._raise_aborted()
        if item is _CLOSED:
            self._queue.put_nowait(item)
            return _CLOSED_RECEIPT
        return Receipt(ReceiveStatus.EVENT, item)


class RoutingFabric:
    """
    Addressable set of EventQueues.

    Usage:
        fabric = RoutingFabric(capacity=1000)
        fabric.allocate([QueueKey.of(ep, Channel.MESSAGES, 0, 1)])
        fabric.send(key, event)             # decoder thread
        receipt = fabric.receive(key, 2.0)  # scenario driver
        fabric.close(key)                   # decoder thread, at end of output
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        self.capacity = capacity
        self._queues: Dict[QueueKey, EventQueue] = {}
        self._lock = threading.Lock()
        self._failure: Optional[BaseException] = None

    def allocate(self, keys: Iterable[QueueKey]):
        with self._lock:
            for key in keys:
                if key not in self._queues:
                    self._queues[key] = EventQueue(key, self.capacity)

    def release(self):
        """Drop every queue; used at teardown once all producers stopped."""
        with self._lock:
            self._queues.clear()
            self._failure = None

    def _queue(self, key: QueueKey) -> EventQueue:
        with self._lock:
            try:
                return self._queues[key]
            except KeyError:
                raise UnknownQueueError(f"No queue allocated for {key}") from None

    def has_queue(self, key: QueueKey) -> bool:
        with self._lock:
            return key in self._queues

    def send(self, key: QueueKey, event: ProtocolEvent):
        self._queue(key).put(event)

    def receive(self, key: QueueKey, timeout: Optional[float]) -> Receipt:
        return self._queue(key).get(timeout)

    def poll(self, key: QueueKey) -> Receipt:
        return self._queue(key).get(0)

    def close(self, key: QueueKey):
        self._queue(key).close()

    def is_closed(self, key: QueueKey) -> bool:
        return self._queue(key).closed

    def abort(self, cause: BaseException):
        """Make every current and future receive raise HarnessAborted."""
        with self._lock:
            if self._failure is None:
                self._failure = cause
            queues = list(self._queues.values())
        for q in queues:
            q.abort(cause)

    @property
    def failure(self) -> Optional[BaseException]:
        return self._failure

    def keys_for(self, owner: Node) -> Iterable[QueueKey]:
        with self._lock:
            return [
                k for k in self._queues
                if k.owner_role is owner.role and k.owner_index == owner.index
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._queues)
