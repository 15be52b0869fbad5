"""
Toggles feature: per-environment feature toggles with change notifications.

Public API:
    from features.toggles import FeatureService, MemoryStore, NotificationDispatcher
    from features.toggles import matrix
    from features.toggles.db import PostgresStore
"""

from features.toggles.memory import MemoryStore
from features.toggles.models import (
    ChangeKind,
    Environment,
    Feature,
    FeatureStatus,
    FeatureView,
    StatusChange,
)
from features.toggles.notifier import LogNotifier, NotificationDispatcher, SlackNotifier
from features.toggles.reconciler import ReconcileResult, StatusReconciler
from features.toggles.service import FeatureService

__all__ = [
    "ChangeKind",
    "Environment",
    "Feature",
    "FeatureService",
    "FeatureStatus",
    "FeatureView",
    "LogNotifier",
    "MemoryStore",
    "NotificationDispatcher",
    "ReconcileResult",
    "SlackNotifier",
    "StatusChange",
    "StatusReconciler",
]
