"""
Client Module - Session Transports

How the orchestrator reaches its peer: over HTTP, or in-process.
"""

from .transport import SessionTransport, HttpSessionTransport
from .local import LocalSessionTransport

__all__ = ['SessionTransport', 'HttpSessionTransport', 'LocalSessionTransport']
