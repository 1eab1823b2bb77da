"""Restaurant/spa order and invoice settlement service."""

__version__ = "1.0.0"
