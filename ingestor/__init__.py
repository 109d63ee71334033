"""Provider transaction ingestor."""

__version__ = "0.1.0"
