from .api_key import UserAPIKey
from .base import Base, StringIdPrimaryKeyMixin, TimestampMixin, new_id, utcnow
from .chat import MESSAGE_ROLES, MESSAGE_STATUSES, Chat, Message
from .preferences import UserPreference
from .request_limit import RequestLimit

__all__ = [
    "Base",
    "Chat",
    "MESSAGE_ROLES",
    "MESSAGE_STATUSES",
    "Message",
    "RequestLimit",
    "StringIdPrimaryKeyMixin",
    "TimestampMixin",
    "UserAPIKey",
    "UserPreference",
    "new_id",
    "utcnow",
]
