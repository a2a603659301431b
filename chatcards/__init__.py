"""Core conversation-to-card utilities for chatsnap."""

from .pagination import PaginationConfig, Paginator, paginate  # noqa: F401
from .parser import Role, Turn, parse_conversation  # noqa: F401
from .session import CardSession  # noqa: F401

__all__ = [
    "CardSession",
    "PaginationConfig",
    "Paginator",
    "Role",
    "Turn",
    "paginate",
    "parse_conversation",
]
