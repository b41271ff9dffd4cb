"""
Workspace server core.

This package contains the server-side building blocks of the LAN workspace:
- Database (asyncio SQLite connection pool)
- Discovery (UDP beacon broadcaster and client listener)
- Runtime (configuration, health, command line)
"""

__version__ = "0.1.0"
