"""
Postgres backing store for features, environments and feature status.

Tables:
  features        — one row per toggle, unique name
  environments    — one row per deployment target, unique name
  feature_status  — sparse (feature, environment) -> enabled, unique pair

Status writes are conditional (insert-if-absent, update-if-unchanged) so
concurrent reconciliations cannot silently overwrite each other.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any

import psycopg2
import psycopg2.errors
import psycopg2.extras

import config
from features.toggles.errors import ConflictError, DependencyError, NoRowsError
from features.toggles.models import Environment, Feature, FeatureStatus, utcnow

log = logging.getLogger(__name__)

# ── Schema ────────────────────────────────────────────────────────────

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS features (
    id              SERIAL PRIMARY KEY,
    name            TEXT NOT NULL UNIQUE,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS environments (
    id              SERIAL PRIMARY KEY,
    name            TEXT NOT NULL UNIQUE,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS feature_status (
    id              SERIAL PRIMARY KEY,
    feature_id      INTEGER NOT NULL REFERENCES features(id),
    environment_id  INTEGER NOT NULL REFERENCES environments(id),
    enabled         BOOLEAN NOT NULL DEFAULT false,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
    UNIQUE (feature_id, environment_id)
);

CREATE INDEX IF NOT EXISTS idx_feature_status_environment_id ON feature_status(environment_id);
"""


def _feature(row: dict) -> Feature:
    return Feature(id=row["id"], name=row["name"], created_at=row["created_at"])


def _environment(row: dict) -> Environment:
    return Environment(id=row["id"], name=row["name"], created_at=row["created_at"])


def _status(row: dict) -> FeatureStatus:
    return FeatureStatus(
        id=row["id"],
        feature_id=row["feature_id"],
        environment_id=row["environment_id"],
        enabled=row["enabled"],
        created_at=row["created_at"],
    )


class PostgresStore:
    def __init__(self, dsn: str | None = None):
        self.dsn = dsn or config.DATABASE_URL
        self._pool: list[Any] = []
        self._lock = threading.Lock()

    # ── Connection ────────────────────────────────────────────────────

    def _get_conn(self):
        """Get a Postgres connection (simple single-connection reuse)."""
        with self._lock:
            if self._pool:
                conn = self._pool[0]
                if not conn.closed:
                    return conn
                self._pool.clear()

            conn = psycopg2.connect(self.dsn)
            conn.autocommit = True
            self._pool.append(conn)
            return conn

    @contextmanager
    def get_cursor(self, conflict: str = ""):
        """Yield a dict cursor, translating driver errors.

        A unique violation becomes ConflictError(conflict) when a conflict
        message is given; anything else from the driver is a DependencyError.
        """
        try:
            conn = self._get_conn()
            cur = conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
        except psycopg2.Error as e:
            raise DependencyError(f"Database unavailable: {e}") from e
        try:
            yield cur
        except psycopg2.Error as e:
            if conflict and isinstance(e, psycopg2.errors.UniqueViolation):
                raise ConflictError(conflict) from e
            raise DependencyError(f"Database error: {e}") from e
        finally:
            cur.close()

    def init_db(self) -> None:
        """Create tables if they don't exist."""
        with self.get_cursor() as cur:
            cur.execute(SCHEMA_SQL)
        log.info("Database schema initialized")

    def close(self) -> None:
        with self._lock:
            for conn in self._pool:
                conn.close()
            self._pool.clear()

    # ── Features ──────────────────────────────────────────────────────

    def get_feature_by_name(self, name: str) -> Feature:
        with self.get_cursor() as cur:
            cur.execute("SELECT * FROM features WHERE name = %s", (name,))
            row = cur.fetchone()
        if not row:
            raise NoRowsError(f"Feature not found: {name}")
        return _feature(row)

    def list_features(self) -> list[Feature]:
        with self.get_cursor() as cur:
            cur.execute("SELECT * FROM features ORDER BY id ASC")
            return [_feature(row) for row in cur.fetchall()]

    def create_feature(self, feature: Feature) -> None:
        with self.get_cursor(conflict=f"Feature already exists: {feature.name}") as cur:
            cur.execute(
                "INSERT INTO features (name, created_at) VALUES (%s, %s) RETURNING id, created_at",
                (feature.name, feature.created_at or utcnow()),
            )
            row = cur.fetchone()
        feature.id = row["id"]
        feature.created_at = row["created_at"]

    def update_feature(self, feature: Feature) -> None:
        with self.get_cursor(conflict=f"Feature already exists: {feature.name}") as cur:
            cur.execute("UPDATE features SET name = %s WHERE id = %s", (feature.name, feature.id))
            if cur.rowcount == 0:
                raise NoRowsError(f"Feature not found: {feature.id}")

    # ── Environments ──────────────────────────────────────────────────

    def get_environment_by_name(self, name: str) -> Environment:
        with self.get_cursor() as cur:
            cur.execute("SELECT * FROM environments WHERE name = %s", (name,))
            row = cur.fetchone()
        if not row:
            raise NoRowsError(f"Environment not found: {name}")
        return _environment(row)

    def list_environments(self) -> list[Environment]:
        with self.get_cursor() as cur:
            cur.execute("SELECT * FROM environments ORDER BY id ASC")
            return [_environment(row) for row in cur.fetchall()]

    def create_environment(self, environment: Environment) -> None:
        with self.get_cursor(conflict=f"Environment already exists: {environment.name}") as cur:
            cur.execute(
                "INSERT INTO environments (name, created_at) VALUES (%s, %s) RETURNING id, created_at",
                (environment.name, environment.created_at or utcnow()),
            )
            row = cur.fetchone()
        environment.id = row["id"]
        environment.created_at = row["created_at"]

    # ── Feature status ────────────────────────────────────────────────

    def list_feature_status(
        self,
        feature_id: int | None = None,
        environment_id: int | None = None,
    ) -> list[FeatureStatus]:
        """List status rows; either filter may be omitted to mean all."""
        clauses, params = [], []
        if feature_id is not None:
            clauses.append("feature_id = %s")
            params.append(feature_id)
        if environment_id is not None:
            clauses.append("environment_id = %s")
            params.append(environment_id)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""

        with self.get_cursor() as cur:
            cur.execute(f"SELECT * FROM feature_status{where} ORDER BY id ASC", tuple(params))
            return [_status(row) for row in cur.fetchall()]

    def create_feature_status(self, status: FeatureStatus) -> bool:
        """Insert the row unless the pair already has one."""
        with self.get_cursor() as cur:
            cur.execute("""
                INSERT INTO feature_status (feature_id, environment_id, enabled, created_at)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (feature_id, environment_id) DO NOTHING
                RETURNING id, created_at
            """, (status.feature_id, status.environment_id, status.enabled, status.created_at or utcnow()))
            row = cur.fetchone()
        if not row:
            return False
        status.id = row["id"]
        status.created_at = row["created_at"]
        return True

    def update_feature_status(self, status: FeatureStatus, expected: bool) -> bool:
        """Set enabled only if the stored value still equals expected."""
        with self.get_cursor() as cur:
            cur.execute("""
                UPDATE feature_status SET enabled = %s
                WHERE feature_id = %s AND environment_id = %s AND enabled = %s
            """, (status.enabled, status.feature_id, status.environment_id, expected))
            return cur.rowcount == 1
