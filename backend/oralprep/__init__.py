"""Oral exam practice submission pipeline."""
