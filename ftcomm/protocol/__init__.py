"""
ftcomm.protocol - Protocol events and the diagnostic output decoder
"""

from .events import (
    ReasonCode,
    HOST_REASONS,
    ENDPOINT_REASONS,
    legal_reasons,
    MessageEvent,
    ErrorEvent,
    ProtocolEvent,
    HostMessage,
)
from .decoder import (
    LineMatcher,
    ErrorReportMatcher,
    MessageReportMatcher,
    OutputDecoder,
    matchers_for,
)

__all__ = [
    'ReasonCode',
    'HOST_REASONS',
    'ENDPOINT_REASONS',
    'legal_reasons',
    'MessageEvent',
    'ErrorEvent',
    'ProtocolEvent',
    'HostMessage',
    'LineMatcher',
    'ErrorReportMatcher',
    'MessageReportMatcher',
    'OutputDecoder',
    'matchers_for',
]
