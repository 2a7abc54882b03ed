"""Margin opportunity scanner for historical closed deals."""

__version__ = "0.1.0"
