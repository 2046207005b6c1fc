#!/usr/bin/env python3
"""
coordinator.py - Scenario Coordinator

Orchestrates N host actors and M endpoint actors through a
setup / run / teardown lifecycle:

1. Setup: flush filters and kill stray binaries on every participating
   node, create actors, allocate routing queues
2. Run: start endpoints, wait for them to listen, start hosts, inject the
   scenario's faults, run one driver thread per host under a global deadline
3. Teardown: stop actors, remove faults, flush filters, kill binaries,
   release queues. Every step runs for every node; a teardown failure is
   raised only when nothing else already failed the run

Failure handling:
- Scenario failures (timeouts, mismatches, unexpected errors) are collected
  per host driver; other drivers keep going
- Harness integrity errors from any actor abort the whole run: every
  blocked receive is woken, every actor is stopped, and run() re-raises
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, TYPE_CHECKING

from ftcomm.config.inventory import Inventory, Node, Role
from ftcomm.config.scenario import ScenarioConfig
from ftcomm.errors import (
    DeliveryTimeout,
    HarnessAborted,
    PayloadMismatch,
    ScenarioFailure,
    RemoteCommandError,
    ScenarioTimeout,
)
from ftcomm.harness.actor import ActorState, NodeActor, queue_keys
from ftcomm.harness.fabric import Channel, QueueKey, Receipt, RoutingFabric
from ftcomm.protocol.events import ErrorEvent, MessageEvent
from ftcomm.remote.controller import RemoteProcessController
from ftcomm.remote.filters import FaultInjector

# Avoid circular import
if TYPE_CHECKING:
    from ftcomm.harness.scenarios import Scenario


logger = logging.getLogger(__name__)

ControllerFactory = Callable[[Node, Inventory], RemoteProcessController]


@dataclass
class HostReport:
    """What one host driver observed."""
    host: int
    messages_sent: int = 0
    deliveries: int = 0
    error_events: int = 0
    tolerated_errors: List[ErrorEvent] = field(default_factory=list)
    failure: Optional[str] = None


@dataclass
class ScenarioResult:
    """Results from one scenario run."""
    scenario: str
    success: bool
    duration_sec: float
    reports: List[HostReport] = field(default_factory=list)
    failures: List[str] = field(default_factory=list)

    @property
    def messages_sent(self) -> int:
        return sum(r.messages_sent for r in self.reports)

    @property
    def deliveries(self) -> int:
        return sum(r.deliveries for r in self.reports)

    @property
    def tolerated_errors(self) -> int:
        return sum(len(r.tolerated_errors) for r in self.reports)

    @property
    def error_events(self) -> int:
        return sum(r.error_events for r in self.reports)


class Coordinator:
    """
    Runs scenarios against the participating part of the inventory.

    Usage:
        coordinator = Coordinator(inventory, config)
        result = coordinator.run(FaultFreeScenario(config))
    """

    def __init__(
        self,
        inventory: Inventory,
        config: ScenarioConfig,
        controller_factory: Optional[ControllerFactory] = None,
        injector: Optional[FaultInjector] = None,
        stop_timeout_s: float = 10.0,
    ):
        config.check_against(inventory)

        self.inventory = inventory
        self.config = config
        self.controller_factory = controller_factory or self._remote_controller
        self.injector = injector or FaultInjector(inventory)
        self.stop_timeout_s = stop_timeout_s

        self.fabric = RoutingFabric(capacity=config.queue_capacity)
        self.host_nodes = list(inventory.hosts[:config.num_hosts])
        self.endpoint_nodes = list(inventory.endpoints[:config.num_endpoints])

        self.hosts: List[NodeActor] = []
        self.endpoints: List[NodeActor] = []

        self._fatal: Optional[BaseException] = None
        self._abort_lock = threading.Lock()

    @property
    def nodes(self) -> List[Node]:
        return self.host_nodes + self.endpoint_nodes

    @property
    def actors(self) -> List[NodeActor]:
        return self.hosts + self.endpoints

    @property
    def num_links(self) -> int:
        return self.inventory.num_links

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def setup(self):
        """Reset the participating nodes and allocate routing queues."""
        logger.info(
            f"Setup: {len(self.host_nodes)} hosts, {len(self.endpoint_nodes)} endpoints, "
            f"{self.num_links} links"
        )
        self._fatal = None

        self.hosts = [self._make_actor(n, len(self.endpoint_nodes)) for n in self.host_nodes]
        self.endpoints = [self._make_actor(n, len(self.host_nodes)) for n in self.endpoint_nodes]

        for actor in self.actors:
            self.injector.reset(actor.node)
            actor.controller.kill_stray()
            self.fabric.allocate(queue_keys(actor.node, actor.num_peers, self.num_links))

    def _remote_controller(self, node: Node, inventory: Inventory) -> RemoteProcessController:
        return RemoteProcessController(node, inventory, launch_grace_s=self.config.launch_grace_s)

    def _make_actor(self, node: Node, num_peers: int) -> NodeActor:
        return NodeActor(
            node,
            self.inventory,
            self.fabric,
            num_peers=num_peers,
            controller=self.controller_factory(node, self.inventory),
            on_fatal=self.abort,
        )

    def start_actors(self):
        """Start endpoints first so they listen before hosts connect."""
        for actor in self.endpoints:
            self._start(actor)

        if self.config.startup_delay_s > 0:
            time.sleep(self.config.startup_delay_s)

        for actor in self.hosts:
            self._start(actor)

    def _start(self, actor: NodeActor):
        # An actor that already died aborts the run; stop launching
        if self._fatal is not None:
            raise self._fatal
        actor.start()

    def stop_actors(self):
        for actor in self.actors:
            actor.stop()
        for actor in self.actors:
            if actor.state is not ActorState.IDLE and not actor.wait_stopped(self.stop_timeout_s):
                logger.warning(f"{actor.node}: did not stop within {self.stop_timeout_s}s")

    def teardown(self):
        """
        Stop actors, remove faults, reset nodes, reclaim queues.

        Every node is reset even when an earlier step failed; the first
        remote command failure is raised at the end.

        Raises:
            RemoteCommandError: If removing faults or resetting a node failed
        """
        if self.config.settle_s > 0:
            time.sleep(self.config.settle_s)

        self.stop_actors()
        errors: List[RemoteCommandError] = []

        try:
            self.injector.remove_all()
        except RemoteCommandError as e:
            errors.append(e)

        for actor in self.actors:
            try:
                self.injector.reset(actor.node)
            except RemoteCommandError as e:
                logger.error(f"{actor.node}: filter reset failed: {e}")
                errors.append(e)
            try:
                actor.controller.kill_stray()
            except RemoteCommandError as e:
                logger.error(f"{actor.node}: stray process cleanup failed: {e}")
                errors.append(e)

        self.fabric.release()
        if errors:
            raise errors[0]
        logger.info("Teardown complete")

    def abort(self, actor: Optional[NodeActor], exc: BaseException):
        """
        Abort the run after a fatal error.

        Wakes every blocked receive with HarnessAborted and stops all actors.
        Only the first cause is kept.
        """
        with self._abort_lock:
            if self._fatal is not None:
                return
            self._fatal = exc

        source = actor.node if actor is not None else "coordinator"
        logger.error(f"Aborting run ({source}): {exc}")
        self.fabric.abort(exc)
        for a in self.actors:
            a.stop()

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, scenario: "Scenario") -> ScenarioResult:
        """
        Run a scenario through setup, run and teardown.

        Returns:
            ScenarioResult; success is False on any scenario failure

        Raises:
            HarnessIntegrityError: If any actor or driver hit a fatal error
        """
        start_wall_time = time.time()
        reports: Dict[int, HostReport] = {}
        failures: List[str] = []

        in_flight: Optional[BaseException] = None
        try:
            self.setup()
            self.start_actors()
            scenario.inject_faults(self)

            drivers = []
            for actor in self.hosts:
                report = HostReport(host=actor.node.index)
                reports[actor.node.index] = report
                thread = threading.Thread(
                    target=self._drive, args=(scenario, actor, report),
                    name=f"driver-{actor.node.name}", daemon=True,
                )
                drivers.append(thread)
                thread.start()

            deadline = start_wall_time + self.config.global_timeout_s
            for thread in drivers:
                thread.join(max(0.0, deadline - time.time()))

            overrun = [t.name for t in drivers if t.is_alive()]
            if overrun:
                message = (
                    f"Scenario '{scenario.name}' overran its "
                    f"{self.config.global_timeout_s}s deadline "
                    f"(still running: {', '.join(overrun)})"
                )
                logger.error(message)
                failures.append(str(ScenarioTimeout(message)))
                self.stop_actors()

            if self._fatal is not None:
                raise self._fatal

        except BaseException as e:
            in_flight = e
            raise

        finally:
            try:
                self.teardown()
            except RemoteCommandError as e:
                if in_flight is None:
                    raise
                logger.error(f"Teardown failed after {type(in_flight).__name__}: {e}")

        failures = [r.failure for r in reports.values() if r.failure] + failures
        result = ScenarioResult(
            scenario=scenario.name,
            success=not failures,
            duration_sec=time.time() - start_wall_time,
            reports=list(reports.values()),
            failures=failures,
        )
        logger.info(
            f"Scenario '{scenario.name}' {'passed' if result.success else 'FAILED'}: "
            f"{result.messages_sent} sent, {result.deliveries} deliveries, "
            f"{result.error_events} error events ({result.tolerated_errors} tolerated)"
        )
        return result

    def _drive(self, scenario: "Scenario", actor: NodeActor, report: HostReport):
        try:
            scenario.drive_host(self, actor, report)
        except ScenarioFailure as e:
            logger.error(f"{actor.node}: {e}")
            report.failure = f"{actor.node}: {e}"
        except HarnessAborted:
            # Root cause already recorded by abort()
            pass
        except Exception as e:
            self.abort(None, e)
        finally:
            actor.finish_sending()

    # ------------------------------------------------------------------
    # Expectations
    # ------------------------------------------------------------------

    def receive(self, key: QueueKey, timeout: Optional[float] = None) -> Receipt:
        return self.fabric.receive(
            key, self.config.delivery_timeout_s if timeout is None else timeout
        )

    def expect_message(self, endpoint: NodeActor, host: Node, link: int,
                       payload: int, number: int) -> MessageEvent:
        """
        Wait for host's message to reach endpoint on link, unmodified.

        Raises:
            DeliveryTimeout: If nothing arrives within delivery_timeout_s
            PayloadMismatch: If a different payload arrives
            ScenarioFailure: If the endpoint's output ended first
        """
        key = QueueKey.of(endpoint.node, Channel.MESSAGES, host.index, link)
        receipt = self.receive(key)

        if receipt.timed_out:
            raise DeliveryTimeout(
                f"message #{number} (payload {payload}) from {host} not received "
                f"by {endpoint.node} on link {link} within "
                f"{self.config.delivery_timeout_s}s"
            )
        if receipt.closed:
            raise ScenarioFailure(
                f"{endpoint.node} output ended before message #{number} "
                f"from {host} arrived on link {link}"
            )

        event = receipt.event
        if event.payload != payload:
            raise PayloadMismatch(
                f"{endpoint.node} received payload {event.payload} on link {link}, "
                f"expected {payload} (message #{number} from {host})"
            )
        return event

    def pending_errors(self, owner: NodeActor, peer: Node, link: int) -> List[ErrorEvent]:
        """Drain without waiting the errors owner has reported about peer on link."""
        key = QueueKey.of(owner.node, Channel.ERRORS, peer.index, link)
        errors = []
        while True:
            receipt = self.fabric.poll(key)
            if not receipt.ok:
                return errors
            errors.append(receipt.event)

    def actor_for(self, role: Role, index: int) -> NodeActor:
        actors = self.hosts if role is Role.HOST else self.endpoints
        return actors[index]
