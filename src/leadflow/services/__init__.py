"""Backend operations behind the API routes, the worker and the CLI.

Each module holds plain async functions taking an ``AsyncSession`` first.
Authenticated operations take the caller's ``user_id`` next.
"""

from . import chat_links, chats, companies, jobs, leads, usage, usage_rules, users

__all__ = [
    "chat_links",
    "chats",
    "companies",
    "jobs",
    "leads",
    "usage",
    "usage_rules",
    "users",
]
