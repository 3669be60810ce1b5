"""Anchor persistence, recovery and revision gating."""
