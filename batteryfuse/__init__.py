"""Battery level fusion for wirelessly connected audio accessories."""

__version__ = "0.1.0"
