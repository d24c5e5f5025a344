"""Credo: credibility scoring, weekly settlement and achievement badges."""

__version__ = "0.1.0"
