"""Core engine components of RequestKit."""
