"""CivicTrack - citizen request tracking with deadline control."""

__version__ = "1.0.0"
