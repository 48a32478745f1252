"""Command line interface for DBScope."""
