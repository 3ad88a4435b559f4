"""OpenID Connect relying party with stateless signed sessions."""

__version__ = "1.0.0"
