"""Tiled imagery bootstrap and tile address resolution for globe rendering."""

__version__ = "0.1.0"
