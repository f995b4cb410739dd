"""Application factory for the mediarelay server."""

from .factory import ServerComponents, create_app

__all__ = ["ServerComponents", "create_app"]
