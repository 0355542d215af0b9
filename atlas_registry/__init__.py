"""Atlas Building Registry — entity resolution and enrichment for building records."""

__version__ = "0.1.0"
