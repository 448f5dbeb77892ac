"""Command-line interface for clipsync."""
