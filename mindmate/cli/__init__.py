"""Command-line interface for mindmate."""
