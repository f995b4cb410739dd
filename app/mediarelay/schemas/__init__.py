from .base import RelaySchema

__all__ = ["RelaySchema"]
