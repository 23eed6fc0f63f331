"""
Live map renderer timings.

Kept apart from the server settings: a map view is a client of the API and
may run anywhere.
"""

from dataclasses import dataclass


@dataclass
class RendererConfig:
    """All durations in seconds."""
    active_window: float = 5 * 60  # Under this since last activity: active
    offline_after: float = 15 * 60  # At or over this: offline
    stale_after: float = 30 * 60  # Location older than this while heartbeats continue
    animation_duration: float = 1.0
    poll_interval: float = 30.0
    frame_interval: float = 1 / 30
    # Jumps faster than this (m/s, with 2x slack) snap instead of animating
    max_plausible_speed: float = 50.0
