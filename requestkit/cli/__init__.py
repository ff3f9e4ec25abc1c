"""Command line interface for RequestKit."""
