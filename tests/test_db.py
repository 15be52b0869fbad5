"""Tests for the Postgres store against a mocked psycopg2 connection."""

import threading
import time
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import psycopg2
import psycopg2.errors
import pytest

from features.toggles.db import PostgresStore
from features.toggles.errors import ConflictError, DependencyError, NoRowsError
from features.toggles.models import Feature, FeatureStatus

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def cursor():
    return MagicMock()


@pytest.fixture
def pg(cursor):
    conn = MagicMock()
    conn.closed = 0
    conn.cursor.return_value = cursor
    with patch("features.toggles.db.psycopg2.connect", return_value=conn) as connect:
        store = PostgresStore("postgresql://test")
        store.connect = connect
        yield store


class TestConnection:
    def test_connection_is_reused(self, pg, cursor):
        cursor.fetchall.return_value = []

        pg.list_features()
        pg.list_environments()

        assert pg.connect.call_count == 1

    def test_cold_start_opens_one_connection(self, pg, cursor):
        cursor.fetchall.return_value = []
        conn = pg.connect.return_value

        def slow_connect(dsn):
            time.sleep(0.05)
            return conn

        pg.connect.side_effect = slow_connect
        start = threading.Barrier(8)

        def worker():
            start.wait()
            pg.list_features()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert pg.connect.call_count == 1

    def test_close_releases_connection(self, pg, cursor):
        cursor.fetchall.return_value = []
        pg.list_features()
        conn = pg.connect.return_value

        pg.close()

        conn.close.assert_called_once()
        assert pg._pool == []

    def test_init_db_runs_schema(self, pg, cursor):
        pg.init_db()

        sql = cursor.execute.call_args[0][0]
        assert "CREATE TABLE IF NOT EXISTS feature_status" in sql
        assert "UNIQUE (feature_id, environment_id)" in sql

    def test_connect_failure_is_dependency_error(self):
        with patch("features.toggles.db.psycopg2.connect", side_effect=psycopg2.OperationalError("down")):
            with pytest.raises(DependencyError, match="Database unavailable"):
                PostgresStore("postgresql://test").list_features()

    def test_driver_error_is_dependency_error(self, pg, cursor):
        cursor.execute.side_effect = psycopg2.errors.UndefinedTable("no such table")

        with pytest.raises(DependencyError):
            pg.list_environments()
        cursor.close.assert_called_once()


class TestFeatures:
    def test_get_feature_by_name(self, pg, cursor):
        cursor.fetchone.return_value = {"id": 3, "name": "dark-mode", "created_at": NOW}

        feature = pg.get_feature_by_name("dark-mode")

        assert feature == Feature(id=3, name="dark-mode", created_at=NOW)
        assert cursor.execute.call_args[0][1] == ("dark-mode",)

    def test_get_feature_by_name_missing(self, pg, cursor):
        cursor.fetchone.return_value = None

        with pytest.raises(NoRowsError):
            pg.get_feature_by_name("nope")

    def test_create_feature_sets_id(self, pg, cursor):
        cursor.fetchone.return_value = {"id": 9, "created_at": NOW}
        feature = Feature(name="dark-mode")

        pg.create_feature(feature)

        assert feature.id == 9
        assert feature.created_at == NOW

    def test_create_feature_duplicate(self, pg, cursor):
        cursor.execute.side_effect = psycopg2.errors.UniqueViolation("duplicate key")

        with pytest.raises(ConflictError, match="dark-mode"):
            pg.create_feature(Feature(name="dark-mode"))

    def test_update_missing_feature(self, pg, cursor):
        cursor.rowcount = 0

        with pytest.raises(NoRowsError):
            pg.update_feature(Feature(id=5, name="x"))


class TestFeatureStatus:
    @pytest.mark.parametrize("feature_id, environment_id, where, params", [
        (None, None, "", ()),
        (1, None, " WHERE feature_id = %s", (1,)),
        (None, 2, " WHERE environment_id = %s", (2,)),
        (1, 2, " WHERE feature_id = %s AND environment_id = %s", (1, 2)),
    ])
    def test_list_filters(self, pg, cursor, feature_id, environment_id, where, params):
        cursor.fetchall.return_value = [
            {"id": 1, "feature_id": 1, "environment_id": 2, "enabled": True, "created_at": NOW},
        ]

        rows = pg.list_feature_status(feature_id=feature_id, environment_id=environment_id)

        sql, args = cursor.execute.call_args[0]
        assert sql == f"SELECT * FROM feature_status{where} ORDER BY id ASC"
        assert args == params
        assert rows == [FeatureStatus(id=1, feature_id=1, environment_id=2, enabled=True, created_at=NOW)]

    def test_create_inserts_if_absent(self, pg, cursor):
        cursor.fetchone.return_value = {"id": 4, "created_at": NOW}
        status = FeatureStatus(feature_id=1, environment_id=2, enabled=True)

        assert pg.create_feature_status(status) is True
        assert status.id == 4
        assert "ON CONFLICT (feature_id, environment_id) DO NOTHING" in cursor.execute.call_args[0][0]

    def test_create_reports_existing_row(self, pg, cursor):
        cursor.fetchone.return_value = None

        assert pg.create_feature_status(FeatureStatus(feature_id=1, environment_id=2)) is False

    def test_update_is_conditional(self, pg, cursor):
        cursor.rowcount = 1
        status = FeatureStatus(feature_id=1, environment_id=2, enabled=False)

        assert pg.update_feature_status(status, expected=True) is True
        sql, args = cursor.execute.call_args[0]
        assert "AND enabled = %s" in sql
        assert args == (False, 1, 2, True)

    def test_update_lost_race(self, pg, cursor):
        cursor.rowcount = 0

        assert pg.update_feature_status(FeatureStatus(feature_id=1, environment_id=2), expected=True) is False
