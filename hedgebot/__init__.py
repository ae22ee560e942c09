"""Two-venue market-neutral hedge bot (Paradex / Lighter)."""

__version__ = "0.1.0"
