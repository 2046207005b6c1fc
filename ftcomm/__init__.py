"""
ftcomm - Test harness for the fault-tolerant host/endpoint communication library

Starts the protocol binaries on lab nodes over ssh, injects link faults with
iptables, and checks message delivery and error reporting.
"""

__version__ = "0.1.0"
