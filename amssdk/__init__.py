"""REST client, operation and event handling, and shared helpers for an AMS service."""

__version__ = "0.1.0"