"""Peer discovery through HTTP trackers."""

from __future__ import annotations

from minibt.discovery.tracker import AsyncTrackerClient, TrackerRequest

__all__ = ["AsyncTrackerClient", "TrackerRequest"]
