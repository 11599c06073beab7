from .base import Base
from .entity import Entity
from .snapshot import EntitySnapshot
from .alert_rule import AlertRuleRecord
from .notification import Notification, NotificationPreference

__all__ = [
    "Base",
    "Entity",
    "EntitySnapshot",
    "AlertRuleRecord",
    "Notification",
    "NotificationPreference",
]
