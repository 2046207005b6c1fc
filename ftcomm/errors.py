"""
errors.py - Harness error taxonomy

Three families of errors:
- Harness integrity errors: the node binary broke its reporting contract or
  the harness itself is wrong. These abort the whole run.
- Programming errors: invalid arguments caught while writing a test
  (bad filter arguments, bad node index, inconsistent inventory).
- Scenario failures: an expectation about protocol behaviour was violated.
  They fail the scenario but do not abort other drivers.
"""


class HarnessIntegrityError(Exception):
    """Base class for errors that abort the whole harness run."""
    pass


class DecodeError(HarnessIntegrityError):
    """Raised when a recognised diagnostic line carries malformed content."""

    def __init__(self, message: str, line: str = ""):
        super().__init__(f"{message}: {line.strip()!r}" if line else message)
        self.line = line


class LaunchError(HarnessIntegrityError):
    """Raised when a remote protocol process cannot be started."""
    pass


class ProcessIOError(HarnessIntegrityError):
    """Raised when writing to a running protocol process fails."""
    pass


class QueueClosedError(HarnessIntegrityError):
    """Raised on a second close of a queue, or a send after close."""
    pass


class UnknownQueueError(HarnessIntegrityError):
    """Raised when an event is routed to a queue that was never allocated."""
    pass


class FabricOverflowError(HarnessIntegrityError):
    """Raised when a queue is full; capacity is sized to never reach this."""
    pass


class RemoteCommandError(HarnessIntegrityError):
    """Raised when a housekeeping command on a node fails or cannot run."""
    pass


class FilterCommandError(RemoteCommandError):
    """Raised when an iptables command fails on a node."""
    pass


class HarnessAborted(HarnessIntegrityError):
    """Raised from blocked receives after another task hit a fatal error."""
    pass


class InventoryError(ValueError):
    """Raised when the node inventory is inconsistent."""
    pass


class UnknownNodeError(LookupError):
    """Raised by inventory accessors for an index outside the population."""
    pass


class FilterArgumentError(ValueError):
    """Raised for an invalid direction, action or link."""
    pass


class FilterRuleError(ValueError):
    """Raised when a filter rule handle is removed twice."""
    pass


class ScenarioFailure(AssertionError):
    """Base class for violated scenario expectations."""
    pass


class DeliveryTimeout(ScenarioFailure):
    """Expected message did not arrive before its deadline."""
    pass


class PayloadMismatch(ScenarioFailure):
    """Message arrived with a payload different from the one sent."""
    pass


class UnexpectedErrorEvent(ScenarioFailure):
    """An error event was reported where none was allowed."""
    pass


class ScenarioTimeout(ScenarioFailure):
    """The scenario overran its global deadline."""
    pass
