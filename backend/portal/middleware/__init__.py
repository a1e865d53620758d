"""Middleware module for the client portal backend."""

from portal.middleware.admin_gate import AdminGateMiddleware

__all__ = [
    "AdminGateMiddleware",
]
