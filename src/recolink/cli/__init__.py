"""Command-line interface for recolink."""
