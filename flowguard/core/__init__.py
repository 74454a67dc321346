"""
Core module initialization
"""

from .guard import FlowGuard
from .config import Config

__all__ = ["FlowGuard", "Config"]
