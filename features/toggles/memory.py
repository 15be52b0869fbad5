"""
In-memory store with the same interface as the Postgres store.

Used when no DATABASE_URL is configured and throughout the tests. All
state lives in this process and is lost on restart.
"""

from __future__ import annotations

import itertools
import threading
from dataclasses import replace

from features.toggles.errors import ConflictError, NoRowsError
from features.toggles.models import Environment, Feature, FeatureStatus, utcnow


class MemoryStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._features: dict[int, Feature] = {}
        self._environments: dict[int, Environment] = {}
        self._status: dict[tuple[int, int], FeatureStatus] = {}

    # ── Features ──────────────────────────────────────────────────────

    def get_feature_by_name(self, name: str) -> Feature:
        with self._lock:
            for feature in self._features.values():
                if feature.name == name:
                    return replace(feature)
        raise NoRowsError(f"Feature not found: {name}")

    def list_features(self) -> list[Feature]:
        with self._lock:
            return [replace(f) for f in self._features.values()]

    def create_feature(self, feature: Feature) -> None:
        with self._lock:
            if any(f.name == feature.name for f in self._features.values()):
                raise ConflictError(f"Feature already exists: {feature.name}")
            feature.id = next(self._ids)
            feature.created_at = feature.created_at or utcnow()
            self._features[feature.id] = replace(feature)

    def update_feature(self, feature: Feature) -> None:
        with self._lock:
            if feature.id not in self._features:
                raise NoRowsError(f"Feature not found: {feature.id}")
            if any(f.name == feature.name and f.id != feature.id for f in self._features.values()):
                raise ConflictError(f"Feature already exists: {feature.name}")
            self._features[feature.id] = replace(self._features[feature.id], name=feature.name)

    # ── Environments ──────────────────────────────────────────────────

    def get_environment_by_name(self, name: str) -> Environment:
        with self._lock:
            for env in self._environments.values():
                if env.name == name:
                    return replace(env)
        raise NoRowsError(f"Environment not found: {name}")

    def list_environments(self) -> list[Environment]:
        with self._lock:
            return [replace(e) for e in self._environments.values()]

    def create_environment(self, environment: Environment) -> None:
        with self._lock:
            if any(e.name == environment.name for e in self._environments.values()):
                raise ConflictError(f"Environment already exists: {environment.name}")
            environment.id = next(self._ids)
            environment.created_at = environment.created_at or utcnow()
            self._environments[environment.id] = replace(environment)

    # ── Feature status ────────────────────────────────────────────────

    def list_feature_status(
        self,
        feature_id: int | None = None,
        environment_id: int | None = None,
    ) -> list[FeatureStatus]:
        with self._lock:
            return [
                replace(s) for s in self._status.values()
                if (feature_id is None or s.feature_id == feature_id)
                and (environment_id is None or s.environment_id == environment_id)
            ]

    def create_feature_status(self, status: FeatureStatus) -> bool:
        """Insert the row unless the pair already has one."""
        with self._lock:
            if status.key in self._status:
                return False
            status.id = next(self._ids)
            status.created_at = status.created_at or utcnow()
            self._status[status.key] = replace(status)
            return True

    def update_feature_status(self, status: FeatureStatus, expected: bool) -> bool:
        """Set enabled only if the stored value still equals expected."""
        with self._lock:
            current = self._status.get(status.key)
            if current is None or current.enabled != expected:
                return False
            current.enabled = status.enabled
            return True
