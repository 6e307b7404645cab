"""Sample-driving simulator."""

from .sim import ISim, Sim

__all__ = ["ISim", "Sim"]
