"""Task storage providers with GitHub Issues sync."""

__version__ = "1.0.0"
