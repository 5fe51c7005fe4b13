"""convertkit - local file conversion with isolated background workers."""

__version__ = "0.3.0"
