"""Multi-strategy vault service."""

__version__ = "0.1.0"
