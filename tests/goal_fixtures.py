"""
Shared fixtures for goal tests: a fresh SQLite database per test.
"""

import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from core.database import Database
from core.logger import setup_logging
from goals.store import GoalStore

# Fixed reference time for deterministic tests
NOW = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def days(n: float) -> timedelta:
    return timedelta(days=n)


class GoalStoreTestCase(unittest.TestCase):
    """Base class giving each test its own initialized database and store."""

    def setUp(self):
        # Keep test output quiet; nothing is written to disk either
        setup_logging(Path("unused.log"), level="DEBUG", log_to_file=False, log_to_console=False)

        self._tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmpdir.cleanup)

        self.db = Database(Path(self._tmpdir.name) / "goals.db", busy_timeout_ms=200)
        self.assertTrue(self.db.initialize())
        self.store = GoalStore(self.db)

    def make_goal(self, owner_id="reader-1", target=10, deadline=None, name="Goal", created_at=NOW):
        """Insert an active goal directly through the store."""
        return self.store.create_goal(
            owner_id=owner_id,
            name=name,
            target_count=target,
            deadline_utc=deadline or NOW + days(30),
            deadline_timezone="UTC",
            created_at=created_at
        )
