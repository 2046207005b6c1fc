"""
controller.py - Remote Process Controller

Wraps one node (host or endpoint) and manages the protocol process running
on it through an ssh session.

Responsibilities:
- Start the node's protocol binary in host or endpoint mode
- Expose the process's stdin (traffic sink) and stdout (diagnostic source)
- Stop the process (best effort, idempotent)
- Housekeeping on the node: kill stray binaries left by a prior run

Design:
- Launch failures are fatal (LaunchError); there is no retry
- The local ssh client is the process handle: killing it tears down the
  remote session, and the remote binary with it
"""

import logging
import subprocess
import time
from typing import IO, Optional, Tuple

from ftcomm.config.inventory import Inventory, Node, Role
from ftcomm.errors import LaunchError, RemoteCommandError
from ftcomm.remote.ssh import SSHTransport


logger = logging.getLogger(__name__)

# ssh exits 255 when the session cannot be set up, the remote shell 127 when
# the executable is missing
LAUNCH_FAILURE_CODES = frozenset({127, 255})


class RemoteProcessController:
    """
    Controls the protocol process of a single node.

    Usage:
        controller = RemoteProcessController(inventory.host(0), inventory)
        stdin, stdout = controller.start(Role.HOST)
        ...
        controller.stop()

    Thread safety: start/stop are called by the owning actor only; stop may
    additionally be called by the coordinator during abort, which is safe
    because terminating an already-dead process is a no-op.
    """

    def __init__(
        self,
        node: Node,
        inventory: Inventory,
        transport: Optional[SSHTransport] = None,
        launch_grace_s: float = 0.0,
        stop_timeout_s: float = 5.0,
    ):
        """
        Args:
            node: Node this controller drives
            inventory: Lab description (executable paths, launch flags)
            transport: Remote command transport (default: ssh to node)
            launch_grace_s: Time to wait before checking the session is alive
            stop_timeout_s: Time allowed for terminate before kill
        """
        self.node = node
        self.inventory = inventory
        self.transport = transport or SSHTransport(node)
        self.launch_grace_s = launch_grace_s
        self.stop_timeout_s = stop_timeout_s
        self.process: Optional[subprocess.Popen] = None

    def start(self, kind: Role) -> Tuple[IO[str], IO[str]]:
        """
        Launch the protocol binary on the node.

        Args:
            kind: Mode to run the binary in; must match the node's role

        Returns:
            (stdin, stdout) text streams of the remote process

        Raises:
            LaunchError: If the mode does not match the node, the process is
                already running, ssh cannot be executed or the session dies
                immediately
        """
        if kind is not self.node.role:
            raise LaunchError(
                f"Can't run {kind.value} on {self.node} ({self.node.role.value} node)"
            )
        if self.process is not None and self.process.poll() is None:
            raise LaunchError(f"{self.node}: protocol process already running")

        argv = self.inventory.launch_argv(kind)
        logger.info(f"{self.node}: starting {' '.join(argv)}")

        try:
            self.process = self.transport.spawn(argv)
        except OSError as e:
            raise LaunchError(f"{self.node}: cannot start remote session: {e}") from e

        if self.launch_grace_s > 0:
            time.sleep(self.launch_grace_s)

        if self.process.poll() is not None:
            returncode = self.process.returncode
            output = self.process.stdout.read() if self.process.stdout else ""
            self.process = None
            raise LaunchError(
                f"{self.node}: remote process exited immediately "
                f"(exit code {returncode}): {output.strip()}"
            )

        return self.process.stdin, self.process.stdout

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """Wait for the process to terminate on its own; returns exit code."""
        if self.process is None:
            return None
        return self.process.wait(timeout=timeout)

    @property
    def running(self) -> bool:
        return self.process is not None and self.process.poll() is None

    def stop(self):
        """
        Terminate the protocol process.

        Safe to call multiple times and on a process that already exited.
        """
        process = self.process
        if process is None or process.poll() is not None:
            return

        logger.info(f"{self.node}: stopping protocol process")
        try:
            process.terminate()
            process.wait(timeout=self.stop_timeout_s)
        except subprocess.TimeoutExpired:
            logger.warning(f"{self.node}: process didn't terminate, killing...")
            process.kill()
            process.wait()
        except ProcessLookupError:
            # Exited between poll() and terminate()
            pass

    def kill_stray(self):
        """
        Kill any host or endpoint binary left on the node by a prior run.

        Raises:
            RemoteCommandError: If killall cannot be run on the node
        """
        for executable in (self.inventory.host_executable, self.inventory.endpoint_executable):
            try:
                result = self.transport.run(["killall", executable])
            except (OSError, subprocess.TimeoutExpired) as e:
                raise RemoteCommandError(f"{self.node}: killall {executable} could not run: {e}") from e
            if result.returncode != 0:
                # killall exits non-zero when nothing matched
                logger.debug(f"{self.node}: killall {executable}: exit {result.returncode}")

    def __repr__(self) -> str:
        state = "running" if self.running else "stopped"
        return f"RemoteProcessController(node={self.node}, {state})"
