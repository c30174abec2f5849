"""Utility helpers."""

from social_publisher.utils.async_utils import close_worker_loop, run_async

__all__ = ["close_worker_loop", "run_async"]
