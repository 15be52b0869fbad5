"""
Data models for the toggles feature.

Feature, Environment and FeatureStatus mirror the persisted tables.
StatusChange is the per-environment outcome of a reconciliation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Feature:
    """A named toggle with a stable identity."""
    name: str
    id: int | None = None
    created_at: datetime | None = None


@dataclass
class Environment:
    """A named deployment target (staging, production, ...)."""
    name: str
    id: int | None = None
    created_at: datetime | None = None


@dataclass
class FeatureStatus:
    """Persisted (feature, environment) -> enabled row.

    Absent rows mean disabled; at most one row exists per pair.
    """
    feature_id: int
    environment_id: int
    enabled: bool = False
    id: int | None = None
    created_at: datetime | None = None

    @property
    def key(self) -> tuple[int, int]:
        return (self.feature_id, self.environment_id)


class ChangeKind(str, Enum):
    UNCHANGED = "unchanged"
    CREATED = "created"
    UPDATED = "updated"


@dataclass(frozen=True)
class StatusChange:
    """What reconciliation did to one environment's status."""
    kind: ChangeKind
    feature: str
    environment: str
    enabled: bool
    previous: bool | None = None

    @property
    def notifiable(self) -> bool:
        return self.kind is not ChangeKind.UNCHANGED


@dataclass
class FeatureView:
    """Dense read-side projection of a feature."""
    id: int
    name: str
    created_at: datetime | None = None
    status: dict[str, bool] = field(default_factory=dict)
