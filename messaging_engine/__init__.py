"""Messaging engine: orchestrated, scored marketing-content generation."""

__version__ = "0.1.0"
