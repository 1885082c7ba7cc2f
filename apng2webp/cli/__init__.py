"""Command-line interface for apng2webp."""
