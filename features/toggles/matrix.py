"""
Turns the sparse feature_status relation into the dense
per-environment view clients read.

Every known environment appears in every map; pairs with no stored row
are reported as disabled.
"""

from __future__ import annotations

import logging
from typing import Iterable

from features.toggles.errors import IntegrityError
from features.toggles.models import Environment, Feature, FeatureStatus

log = logging.getLogger(__name__)


def _environment_names(environments: Iterable[Environment]) -> dict[int, str]:
    return {env.id: env.name for env in environments}


def build_one(
    feature: Feature,
    status_rows: Iterable[FeatureStatus],
    environments: list[Environment],
) -> dict[str, bool]:
    """Dense env name -> enabled map for a single feature.

    Rows belonging to other features are ignored.
    """
    names = _environment_names(environments)
    status = {name: False for name in names.values()}

    for row in status_rows:
        if row.feature_id != feature.id:
            continue
        env_name = names.get(row.environment_id)
        if env_name is None:
            raise IntegrityError(
                f"status row {row.id} references unknown environment {row.environment_id}",
                row=row,
            )
        status[env_name] = row.enabled

    return status


def build_all(
    features: list[Feature],
    status_rows: Iterable[FeatureStatus],
    environments: list[Environment],
    skip_orphans: bool = False,
) -> dict[int, dict[str, bool]]:
    """Dense maps for every feature, keyed by feature id.

    Makes a single pass over status_rows. A row pointing at an unknown
    feature or environment raises IntegrityError, or is logged and skipped
    when skip_orphans is set.
    """
    names = _environment_names(environments)
    matrix = {feature.id: {name: False for name in names.values()} for feature in features}

    for row in status_rows:
        status = matrix.get(row.feature_id)
        env_name = names.get(row.environment_id)
        if status is None or env_name is None:
            message = (
                f"status row {row.id} references unknown "
                f"{'feature' if status is None else 'environment'} "
                f"{row.feature_id if status is None else row.environment_id}"
            )
            if skip_orphans:
                log.warning("Skipping orphaned %s", message)
                continue
            raise IntegrityError(message, row=row)
        status[env_name] = row.enabled

    return matrix
