from .base import Base
from .session import engine

__all__ = ["Base", "engine"]
