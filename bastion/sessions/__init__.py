"""
Bastion Sessions - minimal server-side sessions for the pipeline.
"""

from .core import MemorySessionStore, Session

__all__ = ["Session", "MemorySessionStore"]
