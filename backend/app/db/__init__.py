"""Persistence layer: declarative base, sessions and the goal/milestone/task models."""

from app.db.base import Base
from app.db import models  # noqa: F401  registers every table on Base.metadata

__all__ = ["Base"]
