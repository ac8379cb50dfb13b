"""
Orbit — ORM model registry.

Importing every model here ensures that Alembic (and any other tool that
inspects ``Base.metadata``) discovers all tables automatically.
"""

from orbit.models.profile import Profile, UserType
from orbit.models.match import Match
from orbit.models.conversation import Conversation, ConversationStatus, Message
from orbit.models.sneak_peek import SneakPeek, SneakPeekStatus
from orbit.models.notification import Notification, NotificationType

__all__ = [
    "Profile",
    "UserType",
    "Match",
    "Conversation",
    "ConversationStatus",
    "Message",
    "SneakPeek",
    "SneakPeekStatus",
    "Notification",
    "NotificationType",
]
