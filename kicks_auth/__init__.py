"""GKICKS Auth — customer and staff authentication service."""

__version__ = "1.0.0"
