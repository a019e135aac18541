"""
utils - Utility Functions and Helpers

Modules:
- decorators: Retry with exponential backoff
"""

from .decorators import retry_on_exception

__all__ = [
    'retry_on_exception',
]
