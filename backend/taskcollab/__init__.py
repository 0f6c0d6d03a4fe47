"""Task-collaboration backend: authentication, sessions and realtime delivery."""

__version__ = "0.1.0"
