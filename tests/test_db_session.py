import os
import unittest
from unittest.mock import MagicMock

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("APP_ENV", "test")

from sqlalchemy import create_engine, inspect
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool

from app.core.config import settings
from app.db.session import DatabaseUnavailableError, connect_db


class _FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


def _failing_engine(failures):
    engine = MagicMock()
    conn = MagicMock()
    conn.__enter__.return_value = conn
    errors = [OperationalError("SELECT 1", {}, Exception("down"))] * failures
    engine.connect.side_effect = errors + [conn] * 5
    return engine


class ConnectDbTests(unittest.TestCase):
    def setUp(self):
        self._backup = {
            "APP_ENV": settings.APP_ENV,
            "DB_SYNC_SCHEMA": settings.DB_SYNC_SCHEMA,
            "DB_CONNECT_TIMEOUT_SECONDS": settings.DB_CONNECT_TIMEOUT_SECONDS,
            "DB_RECONNECT_DELAY_SECONDS": settings.DB_RECONNECT_DELAY_SECONDS,
        }
        settings.DB_CONNECT_TIMEOUT_SECONDS = 10
        settings.DB_RECONNECT_DELAY_SECONDS = 1

    def tearDown(self):
        for key, value in self._backup.items():
            setattr(settings, key, value)

    def test_connects_and_syncs_schema(self):
        settings.APP_ENV = "test"
        settings.DB_SYNC_SCHEMA = True
        engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        connect_db(engine)
        self.assertTrue({"users", "posts", "otp_sessions"} <= set(inspect(engine).get_table_names()))
        engine.dispose()

    def test_retries_until_connected(self):
        settings.DB_SYNC_SCHEMA = False
        clock = _FakeClock()
        engine = _failing_engine(3)
        connect_db(engine, sleep=clock.sleep, clock=clock)
        self.assertEqual(engine.connect.call_count, 4)
        self.assertEqual(clock.now, 3.0)

    def test_sync_disabled_leaves_schema_alone(self):
        settings.APP_ENV = "test"
        settings.DB_SYNC_SCHEMA = False
        engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        connect_db(engine)
        self.assertEqual(inspect(engine).get_table_names(), [])
        engine.dispose()

    def test_gives_up_after_timeout(self):
        settings.DB_SYNC_SCHEMA = False
        clock = _FakeClock()
        engine = _failing_engine(100)
        with self.assertRaises(DatabaseUnavailableError):
            connect_db(engine, sleep=clock.sleep, clock=clock)
        self.assertLessEqual(clock.now, 10.0)

    def test_development_env_syncs_schema(self):
        settings.APP_ENV = "development"
        settings.DB_SYNC_SCHEMA = True
        engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        connect_db(engine)
        self.assertTrue({"users", "posts", "otp_sessions"} <= set(inspect(engine).get_table_names()))
        engine.dispose()


if __name__ == "__main__":
    unittest.main()
