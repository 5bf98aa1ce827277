"""Process execution and resource-lifecycle core."""

__version__ = "0.1.0"
