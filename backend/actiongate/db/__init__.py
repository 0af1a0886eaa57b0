"""Database utilities and models."""

from actiongate.db.base import Base
from actiongate.db import models  # noqa: F401  (imported for side effects)

__all__ = ["Base"]
