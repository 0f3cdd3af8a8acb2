"""musicdash: caching and throttling backend for a personal music dashboard."""

__version__ = "0.1.0"
