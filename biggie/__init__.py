"""Fault injection and load generation service"""

__version__ = "1.0.0"
