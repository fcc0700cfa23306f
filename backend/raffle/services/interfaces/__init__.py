"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .increment import IncrementStrategy
from .conditional_increment import ConditionalUpdateIncrement

__all__ = ['IncrementStrategy', 'ConditionalUpdateIncrement']
