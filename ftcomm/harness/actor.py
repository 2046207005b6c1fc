"""
actor.py - Node Actor

Binds a RemoteProcessController, an OutputDecoder and the node's outbound
queues into one concurrently running unit per physical node. This is what
scenarios talk to.

State machine:
    IDLE -> RUNNING      start(): process launched, threads started
    RUNNING -> DRAINING  decoder reached end of output, process reaped
    DRAINING -> STOPPED  all owned queues closed

Threads per actor:
- supervisor: waits for the decoder, stops the process after a failure,
  reports completion
- decoder: reads stdout line by line and routes events into the fabric; at
  end of output reaps the process and fails with LaunchError if the ssh
  session never came up (exit 255 or 127) while nobody asked it to stop
- forwarder (hosts only): writes synthetic traffic to the process's stdin

Any fatal error inside these threads is reported through on_fatal; the
coordinator reacts by aborting the whole run.
"""

import logging
import queue
import threading
from enum import Enum
from typing import IO, Callable, List, Optional

from ftcomm.config.inventory import Inventory, Node, Role
from ftcomm.errors import HarnessIntegrityError, LaunchError, ProcessIOError, UnknownQueueError
from ftcomm.harness.fabric import Channel, QueueKey, RoutingFabric
from ftcomm.protocol.decoder import OutputDecoder
from ftcomm.protocol.events import HostMessage, MessageEvent, ProtocolEvent
from ftcomm.remote.controller import LAUNCH_FAILURE_CODES, RemoteProcessController


logger = logging.getLogger(__name__)

_END_OF_TRAFFIC = object()


class ActorState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


def channels_for(role: Role) -> List[Channel]:
    """Endpoints report messages and errors, hosts only errors."""
    if role is Role.HOST:
        return [Channel.ERRORS]
    return [Channel.MESSAGES, Channel.ERRORS]


def queue_keys(node: Node, num_peers: int, num_links: int) -> List[QueueKey]:
    """Every queue owned by node, given the participating peer population."""
    return [
        QueueKey.of(node, channel, peer, link)
        for channel in channels_for(node.role)
        for peer in range(num_peers)
        for link in range(num_links)
    ]


class NodeActor:
    """
    Drives one node's protocol process and routes what it reports.

    Usage:
        actor = NodeActor(node, inventory, fabric, num_peers=3,
                          on_fatal=coordinator.abort)
        actor.start()
        actor.send(42)          # hosts only
        actor.finish_sending()
        actor.wait_stopped(10)
    """

    def __init__(
        self,
        node: Node,
        inventory: Inventory,
        fabric: RoutingFabric,
        num_peers: int,
        controller: Optional[RemoteProcessController] = None,
        decoder: Optional[OutputDecoder] = None,
        on_fatal: Optional[Callable[["NodeActor", BaseException], None]] = None,
        on_stopped: Optional[Callable[["NodeActor"], None]] = None,
    ):
        self.node = node
        self.inventory = inventory
        self.fabric = fabric
        self.num_peers = num_peers
        self.controller = controller or RemoteProcessController(node, inventory)
        self.decoder = decoder or OutputDecoder.for_node(node, inventory)
        self.on_fatal = on_fatal
        self.on_stopped = on_stopped

        self.keys = queue_keys(node, num_peers, inventory.num_links)
        self.failure: Optional[BaseException] = None

        self._state = ActorState.IDLE
        self._state_lock = threading.Lock()
        self._stopped = threading.Event()
        self._stopping = False
        self._inbound: queue.Queue = queue.Queue()
        self._sending_finished = False
        self._threads: List[threading.Thread] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> ActorState:
        with self._state_lock:
            return self._state

    def _transition(self, expected: ActorState, new: ActorState) -> bool:
        with self._state_lock:
            if self._state is not expected:
                return False
            self._state = new
        logger.debug(f"{self.node}: {expected.value} -> {new.value}")
        return True

    def _set_stopped(self):
        with self._state_lock:
            self._state = ActorState.STOPPED
        logger.info(f"{self.node}: stopped")
        try:
            if self.on_stopped is not None:
                self.on_stopped(self)
        finally:
            self._stopped.set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        """
        Launch the node's process and the actor threads.

        Raises:
            LaunchError: If the remote process cannot be started
            RuntimeError: If the actor was already started
        """
        if self.state is not ActorState.IDLE:
            raise RuntimeError(f"{self.node}: actor already started ({self.state.value})")

        stdin, stdout = self.controller.start(self.node.role)
        self._transition(ActorState.IDLE, ActorState.RUNNING)

        decoder_thread = threading.Thread(
            target=self._decode_loop, args=(stdout,),
            name=f"decoder-{self.node.name}", daemon=True,
        )
        self._threads.append(decoder_thread)

        if self.node.is_host:
            self._threads.append(threading.Thread(
                target=self._forward_loop, args=(stdin,),
                name=f"forwarder-{self.node.name}", daemon=True,
            ))

        supervisor = threading.Thread(
            target=self._supervise, args=(decoder_thread,),
            name=f"actor-{self.node.name}", daemon=True,
        )

        for thread in self._threads:
            thread.start()
        supervisor.start()
        self._threads.append(supervisor)

    def _supervise(self, decoder_thread: threading.Thread):
        decoder_thread.join()
        if self.failure is not None:
            self.controller.stop()
        self._set_stopped()

    def stop(self):
        """
        Best-effort stop: close stdin and terminate the process.

        The decoder then sees end of output and closes the actor's queues.
        Safe to call more than once and from any thread.
        """
        self._stopping = True
        if self.node.is_host:
            self.finish_sending()
        self.controller.stop()

    def wait_stopped(self, timeout: Optional[float] = None) -> bool:
        """Returns True once the actor reached STOPPED."""
        return self._stopped.wait(timeout)

    # ------------------------------------------------------------------
    # Inbound traffic (hosts)
    # ------------------------------------------------------------------

    def send(self, payload: int):
        """
        Queue a synthetic message for the host process.

        Raises:
            ValueError: If this actor drives an endpoint
            RuntimeError: If the actor is not running or sending has finished
        """
        if not self.node.is_host:
            raise ValueError(f"{self.node}: only hosts accept synthetic traffic")
        if self.state is not ActorState.RUNNING or self._sending_finished:
            raise RuntimeError(f"{self.node}: not accepting traffic ({self.state.value})")
        self._inbound.put(HostMessage(payload))

    def finish_sending(self):
        """Close the host process's stdin once queued traffic is written."""
        if self._sending_finished:
            return
        self._sending_finished = True
        self._inbound.put(_END_OF_TRAFFIC)

    def _forward_loop(self, stdin: IO[str]):
        try:
            while True:
                item = self._inbound.get()
                if item is _END_OF_TRAFFIC:
                    break
                stdin.write(item.encode())
                stdin.flush()
                logger.debug(f"{self.node}: wrote message {item.payload}")
        except (OSError, ValueError) as e:
            if not self._stopping:
                self._fail(ProcessIOError(f"{self.node}: stdin closed unexpectedly: {e}"))
            return

        try:
            stdin.close()
        except (OSError, ValueError):
            # Process already gone
            pass

    # ------------------------------------------------------------------
    # Outbound events
    # ------------------------------------------------------------------

    def _decode_loop(self, stdout: IO[str]):
        try:
            self.decoder.pump(stdout, emit=self._route, close=self._drain)
        except HarnessIntegrityError as e:
            self._fail(e)
        except Exception as e:
            self._fail(HarnessIntegrityError(f"{self.node}: decoder crashed: {e!r}"))

    def _route(self, event: ProtocolEvent):
        channel = Channel.MESSAGES if isinstance(event, MessageEvent) else Channel.ERRORS
        if event.peer.index >= self.num_peers:
            raise UnknownQueueError(
                f"{self.node} reported {event} from {event.peer}, "
                f"which is not taking part in this run"
            )
        self.fabric.send(QueueKey.of(self.node, channel, event.peer.index, event.link), event)

    def _drain(self):
        # Reaped before the queues close; a launch-failure exit code means
        # the session never came up
        returncode = self.controller.wait()
        if not self._stopping and returncode in LAUNCH_FAILURE_CODES:
            raise LaunchError(
                f"{self.node}: remote session ended with exit code {returncode} "
                f"before the actor was stopped"
            )
        self._transition(ActorState.RUNNING, ActorState.DRAINING)
        for key in self.keys:
            self.fabric.close(key)

    def _fail(self, exc: BaseException):
        if self.failure is not None:
            return
        self.failure = exc
        logger.error(f"{self.node}: fatal: {exc}")
        if self.on_fatal is not None:
            self.on_fatal(self, exc)
        else:
            self.fabric.abort(exc)

    def __repr__(self) -> str:
        return f"NodeActor(node={self.node}, state={self.state.value})"
