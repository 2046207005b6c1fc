"""
ssh.py - Remote command transport

Runs argument vectors on a node through the system ``ssh`` client.
Commands are always argv lists, never shell strings.
"""

import logging
import subprocess
from typing import List, Optional, Sequence

from ftcomm.config.inventory import Node


logger = logging.getLogger(__name__)


class SSHTransport:
    """
    Builds and runs ``ssh`` commands addressed to one node.

    Usage:
        transport = SSHTransport(node)
        transport.run(['iptables', '-F'])
        proc = transport.spawn(['/opt/ft_comm/ep.elf'])
    """

    def __init__(self, node: Node, ssh_binary: str = "ssh", command_timeout_s: float = 30.0):
        self.node = node
        self.ssh_binary = ssh_binary
        self.command_timeout_s = command_timeout_s

    def command(self, argv: Sequence[str]) -> List[str]:
        """Wrap argv so that it runs on the node."""
        s = self.node.ssh
        return [
            self.ssh_binary,
            "-tt",
            s.destination,
            "-p",
            str(s.port),
            *argv,
        ]

    def run(self, argv: Sequence[str], timeout: Optional[float] = None) -> subprocess.CompletedProcess:
        """
        Run argv on the node and wait for it.

        The exit status is not checked; callers decide what a failure means.

        Raises:
            OSError: If the ssh client cannot be executed
            subprocess.TimeoutExpired: If the command does not finish in time
        """
        cmd = self.command(argv)
        logger.debug(f"{self.node}: {' '.join(cmd)}")
        return subprocess.run(
            cmd,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            timeout=timeout if timeout is not None else self.command_timeout_s,
        )

    def spawn(self, argv: Sequence[str]) -> subprocess.Popen:
        """
        Start argv on the node with stdin/stdout pipes.

        stderr is merged into stdout: with ``-tt`` the remote pty carries
        both streams anyway.
        """
        cmd = self.command(argv)
        logger.debug(f"{self.node}: spawn {' '.join(cmd)}")
        return subprocess.Popen(
            cmd,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            bufsize=1,
        )
