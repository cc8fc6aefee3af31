"""Proxy Overlord Protocol server.

Architecture:
- protocol.py: HTTP/1 request parsing and response serialization
- handlers.py: Command dispatch onto the lifecycle controller
- listener.py: TCP listener with per-connection workers and watchdogs
"""

from proxy_overlord.adapters.server.listener import OverlordServer

__all__ = ["OverlordServer"]
