from .service import CartService

__all__ = ["CartService"]
