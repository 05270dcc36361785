"""Top-level package for the Backpack market monitor."""

__version__ = "0.3.0"

__all__ = [
    "core",
    "data",
    "indicators",
    "signals",
    "scheduler",
    "monitoring",
    "api",
]
