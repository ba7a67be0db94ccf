"""Command line interface (``python -m unit_ingest.cli``)."""
