"""VIP Bar authentication and request-authorization service."""

__version__ = "0.1.0"
