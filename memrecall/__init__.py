"""memrecall - hybrid retrieval over captured screen memories."""

__version__ = "0.1.0"
