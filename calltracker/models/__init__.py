"""
Models package - export all SQLAlchemy models.
"""

from calltracker.models.base import Base
from calltracker.models.call_streak import UserTokenCallStreak
from calltracker.models.notification import Notification
from calltracker.models.token_call import TokenCall
from calltracker.models.user import User

__all__ = ["Base", "Notification", "TokenCall", "User", "UserTokenCallStreak"]
