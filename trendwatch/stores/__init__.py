from .base import NotificationStore, RecipientDirectory, RuleStore, SnapshotStore
from .memory import (
    InMemoryNotificationStore,
    InMemoryRecipientDirectory,
    InMemoryRuleStore,
    InMemorySnapshotStore,
)

__all__ = [
    "SnapshotStore",
    "RuleStore",
    "NotificationStore",
    "RecipientDirectory",
    "InMemorySnapshotStore",
    "InMemoryRuleStore",
    "InMemoryNotificationStore",
    "InMemoryRecipientDirectory",
]
