"""
BastionCache backends.
"""

from .memory import MemoryBackend

__all__ = ["MemoryBackend"]
