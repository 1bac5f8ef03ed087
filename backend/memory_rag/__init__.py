"""Retrieval-augmented memory for the chat assistant."""

__version__ = "1.0.0"
