"""
API Module - dbtaps Peer Server

FastAPI application exposing the peer side of a transfer.
"""

from .session import ServerSession
from .rest import create_app, run_server

__all__ = ['ServerSession', 'create_app', 'run_server']
