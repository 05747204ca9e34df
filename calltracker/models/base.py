"""
SQLAlchemy 2.0 async DeclarativeBase for Call Tracker.

All models inherit from this Base.
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all Call Tracker database models."""
    pass
