"""Agent chat service with optimistic message persistence."""

__version__ = "0.1.0"
