"""
Feature service: the operations the HTTP layer exposes.

Reads go store -> status matrix -> FeatureView. Writes go through the
reconciler, which mutates the store and emits notifications.
"""

from __future__ import annotations

import logging

from features.toggles import matrix
from features.toggles.errors import ValidationError
from features.toggles.models import Environment, Feature, FeatureView, utcnow
from features.toggles.notifier import NotificationDispatcher
from features.toggles.reconciler import ReconcileResult, StatusReconciler

log = logging.getLogger(__name__)


def _required_name(name: str | None, kind: str) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError(f"{kind} name is required")
    return name


class FeatureService:
    def __init__(
        self,
        store,
        dispatcher: NotificationDispatcher,
        strict_updates: bool = True,
        max_cas_attempts: int = 3,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.reconciler = StatusReconciler(
            store,
            dispatcher,
            strict_updates=strict_updates,
            max_attempts=max_cas_attempts,
        )

    # ── Features ──────────────────────────────────────────────────────

    def get(self, name: str) -> FeatureView:
        feature = self.store.get_feature_by_name(name)
        rows = self.store.list_feature_status(feature_id=feature.id)
        environments = self.store.list_environments()
        return FeatureView(
            id=feature.id,
            name=feature.name,
            created_at=feature.created_at,
            status=matrix.build_one(feature, rows, environments),
        )

    def list_features(self) -> list[FeatureView]:
        features = self.store.list_features()
        environments = self.store.list_environments()
        status = matrix.build_all(features, self.store.list_feature_status(), environments)
        return [
            FeatureView(id=f.id, name=f.name, created_at=f.created_at, status=status[f.id])
            for f in features
        ]

    def create(self, name: str | None) -> Feature:
        feature = Feature(name=_required_name(name, "Feature"), created_at=utcnow())
        self.store.create_feature(feature)
        log.info("Created feature %s (id=%s)", feature.name, feature.id)
        return feature

    def update(
        self,
        name: str,
        desired_status: dict[str, bool] | None = None,
        new_name: str | None = None,
    ) -> FeatureView:
        """Reconcile a feature against the desired status map.

        Environments missing from desired_status are desired disabled.
        Raises the first error the reconciliation hit; changes applied
        before it stay applied.
        """
        result = self.reconcile(name, desired_status or {}, new_name)
        if result.error is not None:
            raise result.error
        return self.get(result.feature.name)

    def reconcile(
        self,
        name: str,
        desired_status: dict[str, bool],
        new_name: str | None = None,
    ) -> ReconcileResult:
        feature = self.store.get_feature_by_name(name)
        if new_name is not None:
            new_name = _required_name(new_name, "Feature")
        environments = self.store.list_environments()
        rows = self.store.list_feature_status(feature_id=feature.id)

        result = self.reconciler.reconcile(feature, desired_status, rows, environments, new_name=new_name)
        log.info(
            "Reconciled feature %s: %d change(s) across %d environment(s)",
            result.feature.name, len(result.applied), len(environments),
        )
        return result

    # ── Environments ──────────────────────────────────────────────────

    def list_environments(self) -> list[Environment]:
        return self.store.list_environments()

    def get_environment(self, name: str) -> Environment:
        return self.store.get_environment_by_name(name)

    def create_environment(self, name: str | None) -> Environment:
        environment = Environment(name=_required_name(name, "Environment"), created_at=utcnow())
        self.store.create_environment(environment)
        log.info("Created environment %s (id=%s)", environment.name, environment.id)
        return environment
