"""Storage ports and their SQLAlchemy adapters."""
from .base import UnitOfWork  # noqa: F401
from .sql import SqlUnitOfWork  # noqa: F401
