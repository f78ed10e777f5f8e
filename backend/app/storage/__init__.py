"""
Project and query persistence
"""

from .base import QueryStore
from .memory import InMemoryQueryStore

__all__ = [
    'QueryStore',
    'InMemoryQueryStore'
]
