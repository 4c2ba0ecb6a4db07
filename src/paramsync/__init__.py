"""paramsync - Bidirectional project parameter synchronization."""

__version__ = "0.1.0"
