"""Social Publisher - connect social accounts, schedule and publish video posts."""

__version__ = "0.1.0"
