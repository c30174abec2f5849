"""Adapters for external services."""

from social_publisher.adapters.platforms import PlatformAdapter, get_adapter

__all__ = ["PlatformAdapter", "get_adapter"]
