"""
Utility modules for mabdose
"""

from .logging_system import DosingRunLogger, RunMetadata

__all__ = ['DosingRunLogger', 'RunMetadata']
