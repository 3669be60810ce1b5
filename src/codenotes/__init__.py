"""CodeNotes - line annotations that follow your code."""

__version__ = "0.1.0"
