"""API routers, mounted under ``/api``."""

from . import chats, leads, usage, users

routers = [users.router, leads.router, chats.router, usage.router]

__all__ = ["routers"]
