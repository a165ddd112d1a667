"""Retrieval-augmented chat over uploaded documents."""

__version__ = "1.0.0"
