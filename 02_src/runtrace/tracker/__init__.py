"""Tracker module."""

from .tracker import ITracker, Tracker, format_event

__all__ = ["ITracker", "Tracker", "format_event"]
