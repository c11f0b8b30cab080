"""Watcher implementations used by the update service agent."""

from .poll import PollingWatcher  # noqa: F401

__all__ = ["PollingWatcher"]
