"""Fallback recovery module."""

from .recoverer import FallbackRecoverer, IFallbackRecoverer

__all__ = ["IFallbackRecoverer", "FallbackRecoverer"]
