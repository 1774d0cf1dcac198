"""
Storage Module - Relational Database Access

Uses SQLAlchemy's asyncio extension to read and write table rows.
"""

from .database import Database, init_database, to_async_url

__all__ = ['Database', 'init_database', 'to_async_url']
