"""Contextual-analysis pipeline for task activity."""

__version__ = "0.1.0"
