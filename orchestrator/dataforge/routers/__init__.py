from . import databases

__all__ = ["databases"]
