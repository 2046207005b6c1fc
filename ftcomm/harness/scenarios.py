"""
scenarios.py - Test scenarios driven by the Coordinator

A scenario decides which faults to inject before traffic starts and what
every host driver sends and expects. Drivers run concurrently, one per
participating host.

- FaultFreeScenario: every message reaches every endpoint on every link,
  and nobody reports an error
- LinkFaultScenario: one link is blocked between every host and endpoint;
  messages must still arrive on the healthy links. Errors about the blocked
  link are tolerated and reported, errors about healthy links fail the run.
  Rules stay in place until teardown; nothing is retried after they heal.
"""

import logging
import random
from typing import List, Optional, TYPE_CHECKING

from ftcomm.config.scenario import ScenarioConfig
from ftcomm.errors import UnexpectedErrorEvent
from ftcomm.harness.actor import NodeActor
from ftcomm.remote.filters import Action, Direction

if TYPE_CHECKING:
    from ftcomm.harness.coordinator import Coordinator, HostReport


logger = logging.getLogger(__name__)


class Scenario:
    """
    Base class for scenarios.

    Subclasses pick the faults (inject_faults) and which links must carry
    traffic (healthy); drive_host is shared.
    """

    name = "scenario"

    def __init__(self, config: ScenarioConfig):
        self.config = config

    def inject_faults(self, coordinator: "Coordinator"):
        """Install the scenario's filter rules; called once actors run."""
        pass

    def payloads(self, host_index: int) -> List[int]:
        """Distinct payloads in [0, 100) for one host, seeded per host."""
        seed = None if self.config.seed is None else self.config.seed + host_index
        rng = random.Random(seed)
        count = self.config.num_messages
        if count <= 100:
            return rng.sample(range(100), count)
        return [rng.randrange(100) for _ in range(count)]

    def healthy(self, link: int) -> bool:
        return True

    def send_and_verify(self, coordinator: "Coordinator", host: NodeActor, report: "HostReport"):
        """Send every payload and wait for it on every endpoint and healthy link."""
        for number, payload in enumerate(self.payloads(host.node.index)):
            host.send(payload)
            report.messages_sent += 1
            logger.info(f"{host.node}: sending message #{number} payload {payload}")

            for endpoint in coordinator.endpoints:
                for link in range(coordinator.num_links):
                    if not self.healthy(link):
                        continue
                    coordinator.expect_message(endpoint, host.node, link, payload, number)
                    report.deliveries += 1

            logger.info(f"{host.node}: message #{number} delivered everywhere")

    def check_errors(self, coordinator: "Coordinator", host: NodeActor, report: "HostReport"):
        """
        No error may be pending about this host's links, on either side.

        Errors about unhealthy links are recorded as tolerated.
        """
        for endpoint in coordinator.endpoints:
            for link in range(coordinator.num_links):
                observed = (
                    coordinator.pending_errors(endpoint, host.node, link)
                    + coordinator.pending_errors(host, endpoint.node, link)
                )
                if not observed:
                    continue
                report.error_events += len(observed)
                if not self.healthy(link):
                    report.tolerated_errors.extend(observed)
                    continue
                reasons = ", ".join(e.reason.name for e in observed)
                raise UnexpectedErrorEvent(
                    f"error event(s) between {host.node} and {endpoint.node} "
                    f"on link {link}: {reasons}"
                )

    def drive_host(self, coordinator: "Coordinator", host: NodeActor, report: "HostReport"):
        """
        Send this host's traffic and check what the endpoints observe.

        Raises:
            ScenarioFailure: On the first violated expectation
        """
        self.send_and_verify(coordinator, host, report)
        self.check_errors(coordinator, host, report)
        host.finish_sending()


class FaultFreeScenario(Scenario):
    """All links healthy: H x E x L deliveries per message, zero errors."""

    name = "fault_free"


class LinkFaultScenario(Scenario):
    """
    Block one link between every participating host and endpoint.

    Rules are installed on the endpoints, filtering incoming traffic from
    each host's address on the faulted link.
    """

    name = "link_fault"

    def __init__(self, config: ScenarioConfig, link: Optional[int] = None,
                 action: Optional[Action] = None):
        super().__init__(config)
        self.link = config.fault_link if link is None else link
        self.action = action or Action[config.fault_action.upper()]

    def healthy(self, link: int) -> bool:
        return link != self.link

    def inject_faults(self, coordinator: "Coordinator"):
        for endpoint in coordinator.endpoint_nodes:
            for host in coordinator.host_nodes:
                coordinator.injector.install(
                    endpoint, host, self.link, Direction.INCOMING, self.action
                )
        logger.info(
            f"Blocked link {self.link} ({self.action.value}) on "
            f"{len(coordinator.endpoint_nodes)} endpoints"
        )


SCENARIOS = {
    FaultFreeScenario.name: FaultFreeScenario,
    LinkFaultScenario.name: LinkFaultScenario,
}


def make_scenario(config: ScenarioConfig) -> Scenario:
    return SCENARIOS[config.scenario](config)
