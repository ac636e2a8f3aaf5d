"""API route modules."""

from . import marketplace, tokens

__all__ = ["marketplace", "tokens"]
