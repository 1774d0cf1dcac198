"""
dbtaps - Database Replication over HTTP

Moves schema, indexes and row data between two relational databases
through a peer server, one adaptive, checksummed chunk at a time.
"""

__version__ = '0.1.0'

# Peers must agree on major.minor to talk to each other
COMPATIBLE_VERSION = '.'.join(__version__.split('.')[:2])

VERSION_HEADER = 'Dbtaps-Version'
CHECKSUM_HEADER = 'Dbtaps-Checksum'

__all__ = ['__version__', 'COMPATIBLE_VERSION', 'VERSION_HEADER', 'CHECKSUM_HEADER']
