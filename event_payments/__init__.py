"""Event registration and payment collection service."""

__version__ = "1.0.0"
