"""Command-line interface for framefit."""
