"""nearcast: proximity notification fan-out and push dispatch."""

__version__ = "0.1.0"
