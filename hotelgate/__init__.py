"""Resilient read gateway for a hotel inventory supplier."""

__version__ = "0.1.0"
