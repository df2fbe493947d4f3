"""Configured database sources and their live connections."""

from quarry.sources.registry import SourceRegistry

__all__ = ["SourceRegistry"]
