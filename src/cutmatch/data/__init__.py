"""Packaged static data (style catalog)."""
