"""OAuth2 authorization-code relay with persisted, self-renewing refresh tokens."""

__version__ = "0.1.0"
