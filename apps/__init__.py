"""Django apps of the resource booking service."""
