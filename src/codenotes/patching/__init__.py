"""Patch computation and fuzzy re-application."""
