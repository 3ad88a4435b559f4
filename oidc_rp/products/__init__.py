"""Product catalogue served to authenticated users."""

from .routes import products_router

__all__ = [
    "products_router",
]
