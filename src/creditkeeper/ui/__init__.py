"""Command-line interface for creditkeeper."""
