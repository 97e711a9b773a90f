"""LuxGen tenant resolution and isolation service."""

__version__ = "0.1.0"
