"""Distributed coordination primitives shared by the engines."""

from autopilot.coordination.store import KeyedCounter, Lease, get_redis

__all__ = ["Lease", "KeyedCounter", "get_redis"]
