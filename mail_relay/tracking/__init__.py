"""Processed-message and feedback tracking."""

from .store import TrackingStore

__all__ = ["TrackingStore"]
