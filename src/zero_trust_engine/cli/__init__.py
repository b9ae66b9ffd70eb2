"""Command-line interface (``zero-trust``)."""
