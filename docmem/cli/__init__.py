"""Command-line entry points (``python -m docmem.cli``)."""
