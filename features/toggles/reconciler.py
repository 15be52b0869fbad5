"""
Applies a client's desired status map to one feature.

For each environment the reconciler decides whether to create the status
row, update it, or leave it alone, writes the decision through the store
and hands every real change to the notification dispatcher.

Writes are compare-and-swap: a create only succeeds if no row exists for
the pair, an update only succeeds if the stored value is still the one we
read. When another request wins the race, the pair is re-read and the
decision made again, so each change is applied and notified exactly once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace

from features.toggles.errors import ConflictError, FlagpoleError
from features.toggles.models import (
    ChangeKind,
    Environment,
    Feature,
    FeatureStatus,
    StatusChange,
    utcnow,
)
from features.toggles.notifier import NotificationDispatcher

log = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    feature: Feature
    changes: list[StatusChange] = field(default_factory=list)
    error: FlagpoleError | None = None

    @property
    def applied(self) -> list[StatusChange]:
        return [c for c in self.changes if c.notifiable]


class StatusReconciler:
    """Computes and applies per-environment status changes for a feature.

    Notifications for created rows are always fire-and-forget. Updated
    rows are notified inline when strict_updates is set, and a failed
    notification then fails the whole reconciliation even though the row
    is already stored; otherwise they go through the same async path.
    """

    def __init__(
        self,
        store,
        dispatcher: NotificationDispatcher,
        strict_updates: bool = True,
        max_attempts: int = 3,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.strict_updates = strict_updates
        self.max_attempts = max(max_attempts, 1)

    def reconcile(
        self,
        feature: Feature,
        desired: dict[str, bool],
        current_rows: list[FeatureStatus],
        environments: list[Environment],
        new_name: str | None = None,
    ) -> ReconcileResult:
        # Notifications carry the name the feature is being saved under.
        target = replace(feature, name=new_name) if new_name else feature
        rows = {row.environment_id: row for row in current_rows if row.feature_id == feature.id}
        result = ReconcileResult(feature=feature)

        try:
            for env in environments:
                change = self._apply(target, env, bool(desired.get(env.name, False)), rows.get(env.id))
                result.changes.append(change)
                self._notify(change)

            if target.name != feature.name:
                self.store.update_feature(target)
                log.info("Renamed feature %s -> %s", feature.name, target.name)
                result.feature = target
        except FlagpoleError as e:
            log.error("Reconciliation of feature %s failed: %s", feature.name, e)
            result.error = e

        return result

    def _apply(
        self,
        feature: Feature,
        env: Environment,
        desired: bool,
        row: FeatureStatus | None,
    ) -> StatusChange:
        for attempt in range(self.max_attempts):
            if row is None:
                status = FeatureStatus(
                    feature_id=feature.id,
                    environment_id=env.id,
                    enabled=desired,
                    created_at=utcnow(),
                )
                if self.store.create_feature_status(status):
                    return StatusChange(ChangeKind.CREATED, feature.name, env.name, desired)
            elif row.enabled == desired:
                return StatusChange(ChangeKind.UNCHANGED, feature.name, env.name, desired, previous=row.enabled)
            else:
                previous = row.enabled
                if self.store.update_feature_status(replace(row, enabled=desired), expected=previous):
                    return StatusChange(ChangeKind.UPDATED, feature.name, env.name, desired, previous=previous)

            log.info(
                "Status of %s in %s changed concurrently, re-reading (attempt %d/%d)",
                feature.name, env.name, attempt + 1, self.max_attempts,
            )
            row = self._reload(feature, env)

        raise ConflictError(f"status of {feature.name} in {env.name} kept changing; giving up")

    def _reload(self, feature: Feature, env: Environment) -> FeatureStatus | None:
        rows = self.store.list_feature_status(feature_id=feature.id, environment_id=env.id)
        return rows[0] if rows else None

    def _notify(self, change: StatusChange) -> None:
        if not change.notifiable:
            return
        if change.kind is ChangeKind.UPDATED and self.strict_updates:
            self.dispatcher.deliver(change)
        else:
            self.dispatcher.submit(change)
