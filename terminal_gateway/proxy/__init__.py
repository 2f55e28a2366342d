"""
Proxy Package
=============

Forwards authenticated traffic to the backend terminal service.

Main Components:
----------------
- routes.py: catch-all HTTP and WebSocket routes

Security Features:
------------------
- Identity header always set by the gateway (URL-encoded display name)
- Session cookie and hop-by-hop header stripping

Usage:
------
    from terminal_gateway.proxy import proxy_router
    app.include_router(proxy_router)
"""

from .routes import proxy_router

__all__ = ["proxy_router"]
